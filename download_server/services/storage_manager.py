import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple
from urllib.parse import quote

import aiofiles
import aiofiles.os

from download_server.logger_config import get_logger

logger = get_logger("storage")

CHUNK_SIZE = 8192  # 8KB chunks


@dataclass
class StoredObject:
    key: str
    size: int
    uploaded: datetime
    content_type: Optional[str] = None
    blob_path: Optional[Path] = None

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.blob_path, 'rb') as file:
            while chunk := await file.read(CHUNK_SIZE):
                yield chunk


class StorageManager:
    """Filesystem object store. Keys are opaque strings; '/' inside a key is not a directory."""

    def __init__(self, data_dir: Path, temp_dir: Path):
        self.data_dir = Path(data_dir)
        self.temp_dir = Path(temp_dir)

    async def initialize(self):
        """Create storage directories and clear temp files left by interrupted uploads."""
        logger.info("Initializing storage manager...")

        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.data_dir}, {self.temp_dir}")

        files_removed = 0
        for file in self.temp_dir.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def get_object_paths(self, key: str) -> Tuple[Path, Path]:
        """Get the blob and metadata paths for a key."""
        # Use first 2 chars of MD5 hash as directory name
        hash_prefix = hashlib.md5(key.encode()).hexdigest()[:2]
        directory = self.data_dir / hash_prefix
        stored_name = quote(key, safe="")

        return directory / f"{stored_name}.blob", directory / f"{stored_name}.meta"

    async def _read_metadata(self, metadata_path: Path) -> Optional[dict]:
        try:
            async with aiofiles.open(metadata_path, 'r') as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return None

    @staticmethod
    def _to_object(metadata: dict, blob_path: Path) -> StoredObject:
        return StoredObject(
            key=metadata["key"],
            size=metadata["size"],
            uploaded=datetime.fromisoformat(metadata["uploaded"]),
            content_type=metadata.get("content_type"),
            blob_path=blob_path,
        )

    async def get(self, key: str) -> Optional[StoredObject]:
        """Return the stored object for a key, or None if there is none."""
        blob_path, metadata_path = self.get_object_paths(key)

        if not await aiofiles.os.path.exists(blob_path):
            return None

        metadata = await self._read_metadata(metadata_path)
        if metadata is None:
            stat = await aiofiles.os.stat(blob_path)
            metadata = {
                "key": key,
                "size": stat.st_size,
                "uploaded": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            }
        return self._to_object(metadata, blob_path)

    async def put(self, key: str, stream, content_type: Optional[str] = None) -> StoredObject:
        """Write a payload under key.

        ``stream`` is anything with an async ``read(size)`` (e.g. an UploadFile)
        or plain bytes. The blob is written to the temp dir first and renamed in
        place, so readers never see a partial file.
        """
        blob_path, metadata_path = self.get_object_paths(key)
        blob_path.parent.mkdir(exist_ok=True, parents=True)

        temp_name = uuid.uuid4().hex
        temp_blob_path = self.temp_dir / f"{temp_name}.blob"
        temp_metadata_path = self.temp_dir / f"{temp_name}.meta"

        try:
            size = 0
            async with aiofiles.open(temp_blob_path, 'wb') as f:
                if isinstance(stream, (bytes, bytearray)):
                    size = len(stream)
                    await f.write(stream)
                else:
                    while chunk := await stream.read(CHUNK_SIZE):
                        size += len(chunk)
                        await f.write(chunk)

            uploaded = datetime.now(timezone.utc)
            metadata = {
                "key": key,
                "size": size,
                "uploaded": uploaded.isoformat(),
                "content_type": content_type,
            }
            async with aiofiles.open(temp_metadata_path, 'w') as f:
                await f.write(json.dumps(metadata))

            await aiofiles.os.rename(str(temp_metadata_path), str(metadata_path))
            await aiofiles.os.rename(str(temp_blob_path), str(blob_path))
        except Exception:
            logger.error(f"Error storing object {key}", exc_info=True)
            for path in (temp_blob_path, temp_metadata_path):
                if await aiofiles.os.path.exists(path):
                    await aiofiles.os.unlink(path)
            raise

        logger.debug(f"Stored object {key}, size {size}")
        return self._to_object(metadata, blob_path)

    async def list(self) -> List[StoredObject]:
        """All stored objects, in no particular order."""
        objects = []
        if not self.data_dir.exists():
            return objects

        for metadata_path in self.data_dir.glob("*/*.meta"):
            metadata = await self._read_metadata(metadata_path)
            if metadata is None:
                continue
            blob_path = metadata_path.with_suffix(".blob")
            if not await aiofiles.os.path.exists(blob_path):
                continue
            objects.append(self._to_object(metadata, blob_path))
        return objects


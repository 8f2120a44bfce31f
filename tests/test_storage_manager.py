from io import BytesIO

import pytest
from starlette.datastructures import UploadFile

from download_server.services.storage_manager import StorageManager


@pytest.fixture
def storage(tmp_path):
    return StorageManager(data_dir=tmp_path / "data", temp_dir=tmp_path / "temp")


async def read_all(stored):
    return b"".join([chunk async for chunk in stored.iter_chunks()])


@pytest.mark.asyncio
async def test_put_get_bytes(storage):
    await storage.initialize()
    stored = await storage.put("doc.pdf", b"%PDF-1.7 body", content_type="application/pdf")

    assert stored.size == len(b"%PDF-1.7 body")
    fetched = await storage.get("doc.pdf")
    assert fetched.key == "doc.pdf"
    assert fetched.size == stored.size
    assert fetched.content_type == "application/pdf"
    assert await read_all(fetched) == b"%PDF-1.7 body"


@pytest.mark.asyncio
async def test_put_from_upload_file(storage):
    await storage.initialize()
    payload = b"x" * 20000
    upload = UploadFile(file=BytesIO(payload), filename="big.zip")

    stored = await storage.put("big.zip", upload)

    assert stored.size == 20000
    assert await read_all(await storage.get("big.zip")) == payload
    # Temp files are renamed into place, none are left behind
    assert list((storage.temp_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_get_missing_returns_none(storage):
    await storage.initialize()
    assert await storage.get("nothing.pdf") is None


@pytest.mark.asyncio
async def test_put_overwrites(storage):
    await storage.initialize()
    await storage.put("same.png", b"old")
    await storage.put("same.png", b"newer")

    fetched = await storage.get("same.png")
    assert fetched.size == 5
    assert await read_all(fetched) == b"newer"
    assert len(await storage.list()) == 1


@pytest.mark.asyncio
async def test_slash_keys_are_opaque(storage):
    await storage.initialize()
    await storage.put("songs/2024/track.mp3", b"audio")

    blob_path, _ = storage.get_object_paths("songs/2024/track.mp3")
    assert blob_path.parent.parent == storage.data_dir
    assert (await storage.get("songs/2024/track.mp3")).key == "songs/2024/track.mp3"
    assert await storage.get("track.mp3") is None


@pytest.mark.asyncio
async def test_list(storage):
    await storage.initialize()
    await storage.put("a.pdf", b"1")
    await storage.put("b/c.jpg", b"22")

    objects = {obj.key: obj.size for obj in await storage.list()}
    assert objects == {"a.pdf": 1, "b/c.jpg": 2}


@pytest.mark.asyncio
async def test_list_before_initialize(storage):
    assert await storage.list() == []


@pytest.mark.asyncio
async def test_initialize_clears_temp(storage):
    storage.temp_dir.mkdir(parents=True)
    (storage.temp_dir / "leftover.blob").write_bytes(b"partial")

    await storage.initialize()

    assert storage.data_dir.is_dir()
    assert list(storage.temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_failed_put_cleans_temp(storage):
    await storage.initialize()

    class BrokenStream:
        async def read(self, size):
            raise IOError("client went away")

    with pytest.raises(IOError):
        await storage.put("broken.zip", BrokenStream())

    assert await storage.get("broken.zip") is None
    assert list(storage.temp_dir.iterdir()) == []

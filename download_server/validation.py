from typing import Iterable, Optional

from fastapi import HTTPException


def get_extension(filename: str) -> Optional[str]:
    """Return the lower-cased extension including the dot, or None when there is no dot."""
    if not filename:
        return None
    dot = filename.rfind(".")
    if dot == -1:
        return None
    return filename[dot:].lower()


def is_valid_file(filename: Optional[str], allowed_extensions: Iterable[str]) -> bool:
    """Check if the filename's extension is in the allow-list."""
    ext = get_extension(filename or "")
    if ext is None:
        return False
    return ext in allowed_extensions


def validate_filename(filename: Optional[str], allowed_extensions: Iterable[str], detail: str = "Invalid file type"):
    """Validate the filename and raise HTTPException if invalid."""
    if not is_valid_file(filename, allowed_extensions):
        raise HTTPException(status_code=400, detail=detail)

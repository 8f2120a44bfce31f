from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class LinkDescriptor(BaseModel):
    success: bool = True
    url: str
    filename: str
    expires: int  # epoch milliseconds, advisory only
    direct: bool = True


class UploadResponse(BaseModel):
    success: bool = True
    filename: str
    url: str
    size: int
    stats_url: str


class FileEntry(BaseModel):
    key: str
    size: int
    uploaded: datetime
    downloads: int
    stats_url: str
    download_url: str


class FileListResponse(BaseModel):
    success: bool = True
    files: List[FileEntry]
    total_files: int
    total_downloads: int


class StatsResponse(BaseModel):
    success: bool
    filename: str
    downloads: int
    key: Optional[str] = None
    timestamp: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class AllStatsResponse(BaseModel):
    success: bool = True
    stats: Dict[str, int]
    total_files: int
    total_downloads: int


class ResetStatsResponse(BaseModel):
    success: bool = True
    message: str
    filename: str


class KVTestResponse(BaseModel):
    success: bool
    kv_test: str
    written: Optional[str] = None
    read: Optional[str] = None
    error: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None

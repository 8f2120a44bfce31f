"""Configuration settings for the download server."""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

# Link policy
DOWNLOAD_EXPIRY = 365 * 24 * 60 * 60  # 1 year in seconds
ALLOWED_EXTENSIONS = ('.jpg', '.png', '.pdf', '.zip', '.mp4', '.mp3')

# Counter keys
COUNTER_PREFIX = "download:"
KV_PROBE_KEY = "test_kv_functionality"

# Background counter updates
COUNTER_QUEUE_SIZE = 1000
COUNTER_WORKERS = 1
SHUTDOWN_DRAIN_SECONDS = 5.0

# Counter failure alerts
FAILURE_THRESHOLD = 5
FAILURE_WINDOW_SECONDS = 60

# Directory paths
DATA_DIR = "./data"
TEMP_DIR = "./temp"
LOGS_DIR = "./logs"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_extensions(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = os.getenv(name)
    if not value:
        return default
    extensions = []
    for ext in value.split(","):
        ext = ext.strip().lower()
        if not ext:
            continue
        extensions.append(ext if ext.startswith(".") else f".{ext}")
    return tuple(extensions)


@dataclass
class Settings:
    """Runtime configuration passed into the app factory."""
    auth_token: Optional[str] = None
    allowed_extensions: Tuple[str, ...] = ALLOWED_EXTENSIONS
    download_expiry: int = DOWNLOAD_EXPIRY
    counter_prefix: str = COUNTER_PREFIX
    debug: bool = False
    kv_selftest_enabled: bool = True
    data_dir: str = DATA_DIR
    temp_dir: str = TEMP_DIR
    logs_dir: str = LOGS_DIR
    redis_url: Optional[str] = None
    logzio_token: Optional[str] = None
    logzio_url: str = "https://listener.logz.io:8071"
    counter_queue_size: int = COUNTER_QUEUE_SIZE
    counter_workers: int = COUNTER_WORKERS
    shutdown_drain_seconds: float = SHUTDOWN_DRAIN_SECONDS
    failure_threshold: int = FAILURE_THRESHOLD
    failure_window_seconds: int = FAILURE_WINDOW_SECONDS
    cors_allow_headers: Tuple[str, ...] = field(
        default=("Content-Type", "Authorization", "X-Debug")
    )

    def __post_init__(self):
        self.allowed_extensions = tuple(ext.lower() for ext in self.allowed_extensions)
        if self.download_expiry <= 0:
            raise ValueError("Download expiry must be positive")
        if self.counter_queue_size <= 0:
            raise ValueError("Counter queue size must be positive")
        if self.counter_workers <= 0:
            raise ValueError("Counter workers must be positive")

    @property
    def auth_required(self) -> bool:
        return bool(self.auth_token)

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create Settings from environment variables, falling back to module defaults."""
        return cls(
            auth_token=os.getenv("AUTH_TOKEN") or None,
            allowed_extensions=_env_extensions("ALLOWED_EXTENSIONS", ALLOWED_EXTENSIONS),
            download_expiry=int(os.getenv("DOWNLOAD_EXPIRY", DOWNLOAD_EXPIRY)),
            counter_prefix=os.getenv("COUNTER_PREFIX", COUNTER_PREFIX),
            debug=_env_bool("DEBUG", False),
            kv_selftest_enabled=_env_bool("KV_SELFTEST_ENABLED", True),
            data_dir=os.getenv("DATA_DIR", DATA_DIR),
            temp_dir=os.getenv("TEMP_DIR", TEMP_DIR),
            logs_dir=os.getenv("LOGS_DIR", LOGS_DIR),
            redis_url=os.getenv("REDIS_URL") or None,
            logzio_token=os.getenv("LOGZIO_TOKEN") or None,
            logzio_url=os.getenv("LOGZIO_URL", "https://listener.logz.io:8071"),
            counter_queue_size=int(os.getenv("COUNTER_QUEUE_SIZE", COUNTER_QUEUE_SIZE)),
            counter_workers=int(os.getenv("COUNTER_WORKERS", COUNTER_WORKERS)),
            shutdown_drain_seconds=float(os.getenv("SHUTDOWN_DRAIN_SECONDS", SHUTDOWN_DRAIN_SECONDS)),
            failure_threshold=int(os.getenv("FAILURE_THRESHOLD", FAILURE_THRESHOLD)),
            failure_window_seconds=int(os.getenv("FAILURE_WINDOW_SECONDS", FAILURE_WINDOW_SECONDS)),
        )

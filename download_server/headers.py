from typing import Dict, Iterable
from urllib.parse import quote

CORS_ALLOW_ORIGIN = "*"
DOWNLOAD_ALLOW_METHODS = "GET, HEAD, OPTIONS"
PREFLIGHT_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
PREFLIGHT_MAX_AGE = 86400


def content_disposition(filename: str) -> str:
    """Forced-download disposition; non-ASCII names get an RFC 5987 filename* as well."""
    escaped = filename.replace('\\', '\\\\').replace('"', '\\"')
    if filename.isascii():
        return f'attachment; filename="{escaped}"'
    ascii_fallback = escaped.encode('ascii', 'replace').decode('ascii')
    return f'attachment; filename="{ascii_fallback}"; filename*=UTF-8\'\'{quote(filename, safe="")}'


def download_headers(filename: str, expiry_seconds: int, allow_headers: Iterable[str]) -> Dict[str, str]:
    return {
        'Content-Disposition': content_disposition(filename),
        'Cache-Control': f'public, max-age={expiry_seconds}, immutable',
        'Access-Control-Allow-Origin': CORS_ALLOW_ORIGIN,
        'Access-Control-Allow-Methods': DOWNLOAD_ALLOW_METHODS,
        'Access-Control-Allow-Headers': ', '.join(allow_headers),
    }


def json_headers() -> Dict[str, str]:
    return {
        'Access-Control-Allow-Origin': CORS_ALLOW_ORIGIN,
        'Cache-Control': 'no-cache',
    }


def preflight_headers(allow_headers: Iterable[str]) -> Dict[str, str]:
    return {
        'Access-Control-Allow-Origin': CORS_ALLOW_ORIGIN,
        'Access-Control-Allow-Methods': PREFLIGHT_ALLOW_METHODS,
        'Access-Control-Allow-Headers': ', '.join(allow_headers),
        'Access-Control-Max-Age': str(PREFLIGHT_MAX_AGE),
    }

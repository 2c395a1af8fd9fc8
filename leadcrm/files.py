from __future__ import annotations

import re
from pathlib import Path, PurePosixPath
from typing import BinaryIO
from urllib.parse import quote

from leadcrm.core.config import get_settings

_UNSAFE_HEADER_CHARS = re.compile(r'[^\x20-\x7e]|["\\]')


def _base_dir() -> Path:
    base = Path(get_settings().storage_dir)
    base.mkdir(parents=True, exist_ok=True)
    return base


def _resolve(relative_path: str) -> Path:
    base = _base_dir().resolve()
    target = (base / PurePosixPath(relative_path)).resolve()
    if base not in target.parents:
        raise FileNotFoundError(f"path outside storage: {relative_path}")
    return target


def safe_filename(filename: str | None, default: str = "file.bin") -> str:
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    return name or default


def store_bytes(content: bytes, directory: str, filename: str) -> str:
    relative_path = f"{directory}/{safe_filename(filename)}"
    target = _resolve(relative_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    return relative_path


def get_bytes(relative_path: str) -> bytes:
    target = _resolve(relative_path)
    if not target.exists():
        raise FileNotFoundError(f"file not found: {relative_path}")
    return target.read_bytes()


def delete(relative_path: str) -> bool:
    try:
        target = _resolve(relative_path)
    except FileNotFoundError:
        return False
    if not target.exists():
        return False
    target.unlink()
    return True


def read_upload(stream: BinaryIO, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes so oversized uploads are detected without buffering them."""
    return stream.read(limit + 1)


def content_disposition(filename: str) -> str:
    """RFC 6266 ``attachment`` header value with an ASCII fallback and a UTF-8 ``filename*``."""
    fallback = _UNSAFE_HEADER_CHARS.sub("_", filename) or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"

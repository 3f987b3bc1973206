import hashlib
from pathlib import Path
from typing import Iterator, Optional

from .adapters import EXTENSIONS, detect_format
from .models import DocumentFormat

CHUNK_SIZE = 8192


class IngestError(Exception):
    """A file the batch refuses before any adapter sees it."""


class UnsupportedFormatError(IngestError):
    pass


class FileTooLargeError(IngestError):
    pass


def calculate_sha256(file_path: Path) -> str:
    """Calculate SHA256 hash of a file efficiently."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            sha256.update(chunk)
    return sha256.hexdigest()


def check_file(file_path: Path, max_bytes: Optional[int] = None) -> DocumentFormat:
    """Format of an acceptable upload; raises IngestError otherwise."""
    fmt = detect_format(file_path)
    if fmt is None:
        raise UnsupportedFormatError(
            f"Unsupported file type {file_path.suffix or '(none)'}; expected one of {', '.join(sorted(EXTENSIONS))}"
        )
    if max_bytes is None:
        from .config import settings
        max_bytes = settings.max_file_bytes
    size = file_path.stat().st_size
    if size > max_bytes:
        raise FileTooLargeError(
            f"File is {size / 1024 / 1024:.1f}MB, limit is {max_bytes / 1024 / 1024:.1f}MB"
        )
    return fmt


def scan_inbox(
    inbox_path: Path,
    exclude_dirs: set = {"Exports", "Uploads", ".orlap"},
) -> Iterator[Path]:
    """Yields supported documents from a folder (shallow), skipping system/output folders."""
    if not inbox_path.exists():
        return

    for item in sorted(inbox_path.iterdir()):
        if item.name.startswith(".") or item.name.startswith("~$") or item.name in exclude_dirs:
            continue
        if item.is_file() and item.suffix.lower() in EXTENSIONS:
            yield item

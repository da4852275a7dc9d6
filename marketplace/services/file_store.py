"""Local file store for purchase-order files and supplier invoices.

Files are written under STORAGE_DIR and addressed by `file://` URIs. The
lifecycle services keep the URI; the only content they look at is the PDF
signature of an uploaded invoice.
"""

from __future__ import annotations

import hashlib
import uuid
from pathlib import Path
from typing import Any

from marketplace.config import settings


class FileNotFoundInStore(LookupError):
    pass


def storage_root() -> Path:
    """Return the absolute storage root for this service instance."""

    root = Path(settings.storage_dir)
    if root.is_absolute():
        return root

    # marketplace/services/... -> project root
    project_root = Path(__file__).resolve().parents[2]
    return (project_root / root).resolve()


def write_file_bytes(
    *,
    filename: str,
    content: bytes,
    content_type: str | None = None,
    folder: str = "uploads",
    file_id: str | None = None,
) -> dict[str, Any]:
    """Persist an uploaded file.

    Notes:
    - Uses an atomic write (tmp -> replace).
    - Each upload gets its own directory so equal filenames never collide.
    """

    file_id = file_id or str(uuid.uuid4())
    root = storage_root()
    target_dir = (root / folder / file_id).resolve()
    if not target_dir.is_relative_to(root.resolve()):
        raise ValueError("Invalid storage folder")
    target_dir.mkdir(parents=True, exist_ok=True)

    safe_name = Path(filename or "").name
    if not safe_name:
        safe_name = "upload.bin"

    target_path = (target_dir / safe_name).resolve()
    if not target_path.is_relative_to(target_dir):
        raise ValueError("Invalid file path")

    tmp_path = target_path.with_suffix(target_path.suffix + ".tmp")

    sha256 = hashlib.sha256(content).hexdigest()

    tmp_path.write_bytes(content)
    tmp_path.replace(target_path)

    return {
        "file_id": file_id,
        "file_name": safe_name,
        "content_type": content_type or "application/octet-stream",
        "size_bytes": len(content),
        "checksum_sha256": sha256,
        "url": f"file://{target_path.as_posix()}",
    }


def upload_file(filename: str, content: bytes, *, folder: str = "uploads") -> str:
    return write_file_bytes(filename=filename, content=content, folder=folder)["url"]


def resolve_local_path(url: str) -> Path:
    if not url.startswith("file://"):
        raise ValueError("Unsupported file url")

    raw = url[len("file://") :]
    p = Path(raw)

    # Require it to be under storage_root() to prevent path traversal.
    root = storage_root().resolve()
    resolved = p.resolve()
    if not resolved.is_relative_to(root):
        raise ValueError("Invalid file url path")

    return resolved


def download_file(url: str) -> bytes:
    path = resolve_local_path(url)
    if not path.is_file():
        raise FileNotFoundInStore(url)
    return path.read_bytes()


def has_pdf_signature(url: str) -> bool | None:
    """Whether a stored file starts with the PDF magic bytes.

    Returns None for URLs this store does not own; their content is not ours
    to inspect.
    """
    try:
        path = resolve_local_path(url)
    except ValueError:
        return None
    if not path.is_file():
        raise FileNotFoundInStore(url)
    with path.open("rb") as fh:
        return fh.read(4) == b"%PDF"

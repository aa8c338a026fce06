"""
Local photo directory.

The configured directory is scanned breadth first for image files; the
results are exposed to displays as ``/api/photos/local?path=...`` URLs and
served back through ``resolve_local_photo_path``.
"""

import logging
import os
from collections import deque
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import quote

logger = logging.getLogger(__name__)

LOCAL_PHOTOS_DIR_KEY = "localPhotosDir"
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"}
DEFAULT_LIMIT = 200
LOCAL_PHOTO_URL = "/api/photos/local?path="

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


class PhotoDirectoryError(ValueError):
    """The photo directory is unset or does not exist."""


class PhotoNotFoundError(LookupError):
    """The requested photo is outside the directory or is not a file."""


def list_images(root: str, limit: int = DEFAULT_LIMIT) -> List[str]:
    """Relative, forward-slash paths of up to ``limit`` images under ``root``."""
    root_path = Path(root)
    results: List[str] = []
    queue = deque([root_path])

    while queue and len(results) < limit:
        current = queue.popleft()
        try:
            entries = sorted(os.scandir(current), key=lambda entry: entry.name)
        except OSError as e:
            logger.warning(f"Cannot read photo directory {current}: {e}")
            continue
        for entry in entries:
            if len(results) >= limit:
                break
            if entry.name.startswith("."):
                continue
            if entry.is_dir(follow_symlinks=False):
                queue.append(Path(entry.path))
                continue
            if not entry.is_file():
                continue
            if Path(entry.name).suffix.lower() not in IMAGE_EXTENSIONS:
                continue
            results.append(Path(entry.path).relative_to(root_path).as_posix())

    return results


def local_photo_url(relative_path: str) -> str:
    return LOCAL_PHOTO_URL + quote(relative_path, safe="")


def scan_local_photos(directory: str, limit: int = DEFAULT_LIMIT) -> List[str]:
    """
    Scan ``directory`` and return display URLs for the images found.

    Raises:
        PhotoDirectoryError: The directory is empty or missing.
    """
    root = (directory or "").strip()
    if not root:
        raise PhotoDirectoryError("Local photos directory missing")
    if not os.path.isdir(root):
        raise PhotoDirectoryError("Local photos directory not found")
    urls = [local_photo_url(rel) for rel in list_images(root, limit)]
    logger.info(f"Found {len(urls)} local photos in {root}")
    return urls


def local_photos_partial(state: Dict[str, Any], urls: List[str]) -> Dict[str, Any]:
    """
    Partial update storing ``urls`` as local photos.

    ``photos`` is rebuilt from the enabled sources, falling back to the
    local list when nothing is enabled.
    """
    google = state.get("photosGoogle")
    if not isinstance(google, list):
        google = state.get("photos") or []
    sources = state.get("photoSources") or {"google": True, "local": True}
    merged = (list(google) if sources.get("google") else []) + (
        list(urls) if sources.get("local") else []
    )
    return {
        "photos": merged or list(urls),
        "photosGoogle": google,
        "photosLocal": list(urls),
    }


def resolve_local_photo_path(directory: str, relative_path: str) -> Path:
    """
    Absolute path of a photo inside ``directory``.

    Raises:
        PhotoNotFoundError: The path escapes the directory or is not a file.
    """
    root = Path(directory).resolve()
    candidate = (root / relative_path.lstrip("/\\")).resolve()
    if root not in candidate.parents:
        raise PhotoNotFoundError("Invalid photo path")
    if not candidate.is_file():
        raise PhotoNotFoundError("Photo not found")
    return candidate


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")

import logging
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from . import config

logger = logging.getLogger(__name__)

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".svg"}
REMOTE_SCHEMES = ("http://", "https://")


def is_image_name(name: str) -> bool:
    return Path(name).suffix.lower() in IMAGE_EXTS


def is_remote(reference: str) -> bool:
    return reference.lower().startswith(REMOTE_SCHEMES)


def local_asset_path(reference: str) -> Path | None:
    """Map a relative image reference to a file under the assets directory, or None."""
    if not reference or ".." in PurePosixPath(reference).parts:
        return None
    if not is_image_name(reference):
        return None
    assets_dir = config.ASSETS_DIR.resolve()
    file_path = (assets_dir / reference.lstrip("/")).resolve()
    # Safety: ensure file is within the assets directory
    if assets_dir not in file_path.parents:
        return None
    if not file_path.is_file():
        return None
    return file_path


def resolve_image(reference: str | None) -> str | None:
    """
    Resolve an image reference to a URL the browser can fetch.
    Returns None when the image is unavailable; callers render a placeholder.
    """
    reference = (reference or "").strip()
    if not reference:
        return None
    if is_remote(reference):
        return reference
    if local_asset_path(reference) is None:
        logger.warning("Image unavailable for reference %s; using placeholder", reference)
        return None
    return f"/asset/{quote(reference.lstrip('/'))}"

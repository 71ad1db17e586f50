"""
Asset staging: download the source image, check it is a decodable image, and
write it to a unique temp file the browser's upload API can read. The file is
removed when the context exits, whatever happened inside it.
"""
from __future__ import annotations

import io
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from operator_errors import AssetFetchError

log = logging.getLogger(__name__)

MAX_ASSET_BYTES = 20 * 1024 * 1024  # 20 MB

# Pillow format -> file suffix; upload widgets often filter on extension.
FORMAT_SUFFIXES = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "GIF": ".gif",
    "WEBP": ".webp",
    "BMP": ".bmp",
    "TIFF": ".tiff",
}


@dataclass(frozen=True)
class StagedAsset:
    path: Path
    source_url: str
    content_type: str
    size_bytes: int
    image_format: str
    width: int
    height: int


@dataclass(frozen=True)
class ImageInfo:
    image_format: str
    width: int
    height: int


def inspect_image(data: bytes) -> ImageInfo:
    """Identify image bytes with Pillow. Raises AssetFetchError if not an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise AssetFetchError(f"Downloaded asset is not a readable image: {e}") from e
    return ImageInfo(image_format=fmt, width=width, height=height)


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    content_type: str


def _too_large(size: int, max_bytes: int) -> AssetFetchError:
    return AssetFetchError(
        f"Image too large: more than {size / (1024 * 1024):.2f} MB. "
        f"Maximum size is {max_bytes / (1024 * 1024):.0f} MB."
    )


def fetch_image_bytes(
    url: str,
    client: Optional[httpx.Client] = None,
    timeout_s: float = 30.0,
    max_bytes: int = MAX_ASSET_BYTES,
) -> FetchedImage:
    """
    Stream url into memory, stopping as soon as the body passes max_bytes.
    Non-2xx, transport errors, empty and oversize bodies raise AssetFetchError.
    """
    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=timeout_s, follow_redirects=True)
    try:
        with client.stream("GET", url) as resp:
            if not resp.is_success:
                raise AssetFetchError(f"Image fetch failed: HTTP {resp.status_code} for {url}")
            declared = resp.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise _too_large(int(declared), max_bytes)
            buf = bytearray()
            for chunk in resp.iter_bytes():
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    raise _too_large(len(buf), max_bytes)
            content_type = resp.headers.get("content-type", "")
    except httpx.HTTPError as e:
        raise AssetFetchError(f"Could not fetch image from {url}: {e}") from e
    finally:
        if own_client:
            client.close()

    if not buf:
        raise AssetFetchError(f"Image fetch returned an empty body for {url}")
    return FetchedImage(data=bytes(buf), content_type=content_type)


@contextmanager
def staged_asset(
    url: str,
    client: Optional[httpx.Client] = None,
    timeout_s: float = 30.0,
    max_bytes: int = MAX_ASSET_BYTES,
    tmp_dir: Optional[str] = None,
) -> Iterator[StagedAsset]:
    """Download url into a temp file and yield it; the file is deleted on exit."""
    fetched = fetch_image_bytes(url, client=client, timeout_s=timeout_s, max_bytes=max_bytes)
    data = fetched.data
    info = inspect_image(data)

    suffix = FORMAT_SUFFIXES.get(info.image_format, ".img")
    fd, name = tempfile.mkstemp(prefix="web-edit-", suffix=suffix, dir=tmp_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        log.info("Staged %s (%s, %dx%d, %d bytes) at %s", url, info.image_format, info.width, info.height, len(data), path)
        yield StagedAsset(
            path=path,
            source_url=url,
            content_type=fetched.content_type,
            size_bytes=len(data),
            image_format=info.image_format,
            width=info.width,
            height=info.height,
        )
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

"""WebP conversion and remote image dimension probing."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from filetype import guess
from PIL import Image, UnidentifiedImageError

from .models import ConversionResult
from .utils import format_bytes, logger as base_logger

WEBP_QUALITY = 80
CONVERTIBLE_EXTENSIONS = {"jpg", "jpeg", "png"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif"}
PROBE_TIMEOUT = 5.0

PathLike = Union[str, Path]


def detect_image_format(path: Path) -> Optional[str]:
    """Detect the image type from the file signature; returns a lowercase extension."""
    kind = guess(str(path))
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _normalized_extension(path: Path) -> str:
    ext = path.suffix.lstrip(".").lower()
    return "jpg" if ext == "jpeg" else ext


class ImageConverter:
    """Converts JPEG and PNG files to lossy WebP copies next to the original."""

    def __init__(
        self,
        quality: int = WEBP_QUALITY,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.quality = quality
        self.logger = logger or base_logger

    @staticmethod
    def is_image_file(path: PathLike) -> bool:
        return Path(path).suffix.lstrip(".").lower() in IMAGE_EXTENSIONS

    def convert_to_webp(self, path: PathLike) -> Optional[Path]:
        """Return the WebP path, the input itself for ``.webp``, or ``None`` on failure."""
        source = Path(path)
        if source.suffix.lower() == ".webp" and source.exists():
            return source
        result = self.convert(source)
        return result.destination if result else None

    def convert(self, path: PathLike) -> Optional[ConversionResult]:
        source = Path(path)
        if not source.is_file():
            self.logger.error("Source file does not exist: %s", source)
            return None
        extension = source.suffix.lstrip(".").lower()
        if extension not in CONVERTIBLE_EXTENSIONS:
            self.logger.debug("Skipping %s: unsupported extension %s", source, extension)
            return None

        detected = detect_image_format(source)
        if detected != _normalized_extension(source):
            self.logger.error(
                "File signature of %s does not match its extension (%s)", source, detected
            )
            return None

        destination = source.with_suffix(".webp")
        try:
            with Image.open(source) as raw_image:
                if extension == "png":
                    has_alpha = raw_image.mode in ("RGBA", "LA", "PA") or (
                        raw_image.mode == "P" and "transparency" in raw_image.info
                    )
                    image = raw_image.convert("RGBA" if has_alpha else "RGB")
                else:
                    image = raw_image.convert("RGB")
            image.save(destination, "WEBP", quality=self.quality)
        except (OSError, ValueError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
            self.logger.error("Failed to convert image %s to WebP: %s", source, exc)
            return None

        result = ConversionResult(
            source=source,
            destination=destination,
            original_bytes=source.stat().st_size,
            webp_bytes=destination.stat().st_size,
        )
        self.logger.info(
            "Converted %s to WebP. Size reduced from %s to %s (%s%% saved)",
            source,
            format_bytes(result.original_bytes),
            format_bytes(result.webp_bytes),
            result.savings_percent,
        )
        return result


def probe_image_dimensions(
    url: str,
    session: Optional[requests.Session] = None,
    timeout: float = PROBE_TIMEOUT,
) -> Optional[Tuple[int, int]]:
    """Download ``url`` and return ``(width, height)``, or ``None`` on any failure."""
    if url.startswith("//"):
        url = "https:" + url
    http = session or requests
    try:
        resp = http.get(url, timeout=timeout, allow_redirects=True)
        resp.raise_for_status()
    except requests.RequestException as exc:
        base_logger.warning("Failed to fetch image %s: %s", url, exc)
        return None
    try:
        with Image.open(io.BytesIO(resp.content)) as image:
            width, height = image.size
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
        base_logger.warning("Could not read dimensions of %s: %s", url, exc)
        return None
    if not width or not height:
        return None
    return width, height

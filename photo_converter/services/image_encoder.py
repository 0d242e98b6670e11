"""Pillow-backed image encoder used by conversion sessions."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Literal

from PIL import Image, ImageOps, UnidentifiedImageError

from photo_converter.core.errors import EncodeError, FailureReason
from photo_converter.core.logging import get_logger
from photo_converter.models.job import ConversionFormat

logger = get_logger(__name__)

WebPPolicy = Literal["substitute", "reject"]

PNG_COMPRESS_LEVEL = 6


@dataclass(frozen=True)
class EncodeResult:
    """Encoded bytes plus what was actually produced.

    ``fallback_used`` is set when the requested format has no encoder and a
    substitute codec was used instead (WEBP is written as JPEG).
    """

    data: bytes = field(repr=False)
    requested_format: ConversionFormat
    encoded_format: ConversionFormat
    fallback_used: bool = False


def jpeg_quality(quality: float) -> int:
    """Map a ``[0, 1]`` quality factor onto Pillow's 1..100 JPEG scale."""

    clamped = min(1.0, max(0.0, quality))
    return int(round(clamped * 99)) + 1


class ImageEncoder:
    """Decode raw image bytes and re-encode them in a target format.

    Stateless apart from the WEBP policy, so one instance can be shared by
    every session and called from worker threads.
    """

    def __init__(self, *, webp_policy: WebPPolicy = "substitute") -> None:
        self._webp_policy = webp_policy

    def can_decode(self, data: bytes) -> bool:
        """Return True if ``data`` carries an image header Pillow recognises.

        Only the header is read; pixel data is not decoded.
        """

        if not data:
            return False
        try:
            with Image.open(io.BytesIO(data)) as opened:
                opened.verify()
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError):
            return False
        return True

    def encode(self, data: bytes, fmt: ConversionFormat, quality: float) -> EncodeResult:
        """Encode ``data`` as ``fmt``; quality only affects lossy formats."""

        target = self._resolve_target(fmt)
        image = self._load(data)

        buffer = io.BytesIO()
        try:
            if target is ConversionFormat.png:
                self._prepare_png(image).save(
                    buffer, format=target.pillow_format, optimize=False, compress_level=PNG_COMPRESS_LEVEL
                )
            else:
                self._prepare_jpeg(image).save(buffer, format=target.pillow_format, quality=jpeg_quality(quality))
        except (OSError, ValueError) as exc:
            logger.error("image_encode_failed", format=fmt.value, error=str(exc))
            raise EncodeError(FailureReason.encoding_failed, str(exc)) from exc

        fallback_used = target is not fmt
        if fallback_used:
            logger.info("image_encode_fallback", requested=fmt.value, encoded=target.value)

        return EncodeResult(
            data=buffer.getvalue(),
            requested_format=fmt,
            encoded_format=target,
            fallback_used=fallback_used,
        )

    def _resolve_target(self, fmt: ConversionFormat) -> ConversionFormat:
        """Pick the codec that will actually write ``fmt``."""

        if fmt is not ConversionFormat.webp:
            return fmt
        if self._webp_policy == "reject":
            raise EncodeError(FailureReason.unsupported_format, "WEBP encoding is not available")
        return ConversionFormat.jpeg

    @staticmethod
    def _load(data: bytes) -> Image.Image:
        if not data:
            raise EncodeError(FailureReason.unsupported_input, "empty image payload")
        try:
            with Image.open(io.BytesIO(data)) as opened:
                opened.load()
                return ImageOps.exif_transpose(opened)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise EncodeError(FailureReason.unsupported_input, str(exc)) from exc

    @staticmethod
    def _prepare_jpeg(image: Image.Image) -> Image.Image:
        if image.mode in ("RGBA", "LA", "P"):
            # flatten transparency onto white, JPEG has no alpha
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        if image.mode != "RGB":
            return image.convert("RGB")
        return image

    @staticmethod
    def _prepare_png(image: Image.Image) -> Image.Image:
        if image.mode in ("CMYK", "YCbCr", "I;16", "F"):
            return image.convert("RGB")
        return image

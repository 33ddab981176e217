"""
Still-image watermarking: decode, composite overlay, re-encode (Pillow)
"""

import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

from core.errors import DecodeError
from core.models import Dimensions, WatermarkSpec
from core.utils.logging import get_logger
from processors.image.overlay import OverlayRenderer

logger = get_logger(__name__)


def decode_image(source_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(source_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Source is not a decodable image: {e}") from e
    return image


class ImageCompositor:
    def __init__(self, renderer: Optional[OverlayRenderer] = None, output_format: str = "PNG"):
        self.renderer = renderer or OverlayRenderer()
        self.output_format = output_format

    def composite(self, source_bytes: bytes, overlay) -> bytes:
        """Draw ``overlay`` (RGBA image or encoded bytes) over the source image.

        Transparent overlay pixels leave the source untouched. The result keeps
        an alpha channel only when the source had one.
        """
        return self._composite(decode_image(source_bytes), overlay)

    def watermark(self, source_bytes: bytes, spec: WatermarkSpec) -> bytes:
        source = decode_image(source_bytes)
        dims = Dimensions(*source.size)
        logger.info(f"Watermarking {dims.width}x{dims.height} {source.format or 'image'} "
                    f"({len(source_bytes) / 1024:.1f} KB)")
        overlay = self.renderer.render_image(dims, spec)
        return self._composite(source, overlay)

    def _composite(self, source: Image.Image, overlay) -> bytes:
        if isinstance(overlay, (bytes, bytearray)):
            overlay = decode_image(bytes(overlay))
        if overlay.size != source.size:
            raise ValueError(f"Overlay size {overlay.size} does not match source size {source.size}")

        has_alpha = "A" in source.getbands() or "transparency" in source.info
        surface = Image.new("RGBA", source.size, (0, 0, 0, 0))
        surface.alpha_composite(source.convert("RGBA"))
        surface.alpha_composite(overlay.convert("RGBA"))
        if not has_alpha:
            surface = surface.convert("RGB")

        buf = io.BytesIO()
        surface.save(buf, format=self.output_format)
        out = buf.getvalue()
        logger.debug(f"Encoded {self.output_format} output ({len(out) / 1024:.1f} KB)")
        return out

"""
Watermark overlay renderer (Pillow)

Produces a transparent RGBA layer the size of the target asset carrying:
- a diagonal tiled pattern of the watermark text, so crops still show it
- three prominent ring emblems placed in well separated, randomly chosen zones
"""

import io
import math
import random
from functools import lru_cache
from typing import List, NamedTuple, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from core.constants import ZONE_PADDING, ZONE_PATTERNS
from core.models import Dimensions, WatermarkSpec
from core.utils.logging import get_logger

logger = get_logger(__name__)

FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "DejaVuSans-Bold.ttf",
)

TILE_STROKE = (0, 0, 0, 102)
TILE_FILL = (255, 255, 255, 128)
RING_FILL = (0, 255, 255, 115)
RING_BORDER = (0, 0, 0, 153)
EMBLEM_TEXT_STROKE = (0, 0, 0, 153)
EMBLEM_TEXT_FILL = (255, 255, 255, 230)

TILE_ANGLE = 45
LINE_SPACING = 1.2
EMBLEM_FONT_SCALE = 1.2
RING_THICKNESS = 0.35
RING_FONT_SCALE = 0.3


class EmblemPlacement(NamedTuple):
    x: float
    y: float
    width: float
    height: float
    radius: float

    @property
    def box(self) -> Tuple[float, float, float, float]:
        return (
            self.x - self.width / 2,
            self.y - self.height / 2,
            self.x + self.width / 2,
            self.y + self.height / 2,
        )


@lru_cache(maxsize=64)
def get_font(size: int, font_path: Optional[str] = None):
    candidates = ([font_path] if font_path else []) + list(FONT_CANDIDATES)
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def base_font_size(dimensions: Dimensions) -> float:
    return max(16, min(dimensions.width, dimensions.height) / 35)


def ring_radius(dimensions: Dimensions) -> float:
    return max(40, min(dimensions.width, dimensions.height) / 12)


def _clamp(value: float, low: float, high: float) -> float:
    if low > high:
        return (low + high) / 2
    return min(max(value, low), high)


def _text_width(font, lines: Sequence[str]) -> float:
    return max((font.getlength(line) for line in lines), default=0.0)


def _rotate(x: float, y: float) -> Tuple[float, float]:
    """Rotate an offset by TILE_ANGLE counter-clockwise on screen (y points down)."""
    theta = math.radians(TILE_ANGLE)
    c, s = math.cos(theta), math.sin(theta)
    return x * c + y * s, -x * s + y * c


def _composite_clipped(layer: Image.Image, stamp: Image.Image, left: int, top: int):
    x0, y0 = max(left, 0), max(top, 0)
    x1 = min(left + stamp.width, layer.width)
    y1 = min(top + stamp.height, layer.height)
    if x0 >= x1 or y0 >= y1:
        return
    layer.alpha_composite(stamp, dest=(x0, y0), source=(x0 - left, y0 - top, x1 - left, y1 - top))


def _draw_text(draw: ImageDraw.ImageDraw, xy, text: str, font, stroke_width: int, stroke, fill, anchor: str):
    if not text:
        return
    # Outline first, fill on top: legible on both light and dark frames.
    draw.text(xy, text, font=font, fill=stroke, stroke_width=stroke_width, stroke_fill=stroke, anchor=anchor)
    draw.text(xy, text, font=font, fill=fill, anchor=anchor)


class OverlayRenderer:
    def __init__(self, font_path: Optional[str] = None, rng: Optional[random.Random] = None):
        self.font_path = font_path
        self.rng = rng or random.Random()

    def _font(self, size: float):
        return get_font(max(1, int(round(size))), self.font_path)

    def render(self, dimensions: Dimensions, spec: WatermarkSpec) -> bytes:
        """Render the overlay and encode it as PNG with an alpha channel."""
        image = self.render_image(dimensions, spec)
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        return buf.getvalue()

    def render_image(self, dimensions: Dimensions, spec: WatermarkSpec) -> Image.Image:
        width, height = dimensions.size
        overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        overlay.alpha_composite(self._tiled_layer(dimensions, spec.lines))
        overlay.alpha_composite(self._emblem_layer(dimensions, spec))
        if overlay.getchannel("A").getbbox() is None:
            # canvas smaller than a single glyph
            overlay.paste(TILE_FILL, (0, 0, width, height))
        logger.debug(f"Rendered {width}x{height} overlay ({len(spec.lines)} line(s))")
        return overlay

    def _tile_stamp(self, lines: List[str], size: float) -> Tuple[Image.Image, Tuple[float, float]]:
        """One rotated copy of the text block and the position of its anchor.

        The anchor is the left-middle point of the first line, the point each
        tile of the grid is placed at.
        """
        font = self._font(size)
        line_height = size * LINE_SPACING
        stroke_width = max(2, int(round(size / 10)))
        pad = stroke_width + 2

        width = int(math.ceil(_text_width(font, lines))) + 2 * pad
        height = int(math.ceil(len(lines) * line_height)) + 2 * pad
        anchor = (pad, pad + line_height / 2)
        stamp = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(stamp)
        for i, line in enumerate(lines):
            _draw_text(
                draw, (anchor[0], anchor[1] + i * line_height), line, font,
                stroke_width, TILE_STROKE, TILE_FILL, anchor="lm",
            )

        # Counter-clockwise on screen, i.e. a -45 degree canvas rotation.
        rotated = stamp.rotate(TILE_ANGLE, resample=Image.BICUBIC, expand=True)
        dx, dy = _rotate(anchor[0] - width / 2, anchor[1] - height / 2)
        return rotated, (rotated.width / 2 + dx, rotated.height / 2 + dy)

    def _tiled_layer(self, dimensions: Dimensions, lines: List[str]) -> Image.Image:
        width, height = dimensions.size
        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        stamp, (anchor_x, anchor_y) = self._tile_stamp(lines, base_font_size(dimensions))

        diagonal = math.sqrt(width * width + height * height)
        step_x = max(200, width / 4)
        step_y = max(100, height / 6)

        # Grid points live on the rotated plane; each one is mapped back onto
        # the canvas and the pre-rotated stamp is composited there.
        y = -diagonal
        while y < diagonal:
            x = -diagonal
            while x < diagonal:
                dx, dy = _rotate(x - width / 2, y - height / 2)
                left = int(round(width / 2 + dx - anchor_x))
                top = int(round(height / 2 + dy - anchor_y))
                _composite_clipped(layer, stamp, left, top)
                x += step_x
            y += step_y
        return layer

    def choose_pattern(self) -> Tuple[int, int, int]:
        return self.rng.choice(ZONE_PATTERNS)

    def place_emblems(self, dimensions: Dimensions, spec: WatermarkSpec,
                      pattern: Optional[Sequence[int]] = None) -> List[EmblemPlacement]:
        """Pick one emblem center per zone of a (random) zone pattern.

        The emblem box is the larger of the ring and the measured text block.
        The random offset inside a zone collapses to zero when the box does
        not fit, and centers are clamped so the box stays on the canvas.
        """
        width, height = dimensions.size
        size = base_font_size(dimensions) * EMBLEM_FONT_SCALE
        font = self._font(size)
        radius = ring_radius(dimensions)
        emblem_w = max(_text_width(font, spec.lines), 2 * radius)
        emblem_h = max(len(spec.lines) * size * LINE_SPACING, 2 * radius)

        zone_w = width / 3
        zone_h = height / 3
        span_x = max(zone_w - 2 * ZONE_PADDING - emblem_w, 0)
        span_y = max(zone_h - 2 * ZONE_PADDING - emblem_h, 0)

        placements = []
        for index in pattern or self.choose_pattern():
            row, col = divmod(index, 3)
            x = col * zone_w + ZONE_PADDING + emblem_w / 2 + self.rng.uniform(0, span_x)
            y = row * zone_h + ZONE_PADDING + emblem_h / 2 + self.rng.uniform(0, span_y)
            x = _clamp(x, emblem_w / 2, width - emblem_w / 2)
            y = _clamp(y, emblem_h / 2, height - emblem_h / 2)
            placements.append(EmblemPlacement(x, y, emblem_w, emblem_h, radius))
        return placements

    def _emblem_layer(self, dimensions: Dimensions, spec: WatermarkSpec) -> Image.Image:
        layer = Image.new("RGBA", dimensions.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        for placement in self.place_emblems(dimensions, spec):
            self._draw_emblem(draw, placement, spec.lines)
        return layer

    def _draw_emblem(self, draw: ImageDraw.ImageDraw, placement: EmblemPlacement, lines: List[str]):
        cx, cy, radius = placement.x, placement.y, placement.radius
        thickness = max(1, int(round(radius * RING_THICKNESS)))
        border = max(2, int(round(radius / 20)))
        outer = (cx - radius, cy - radius, cx + radius, cy + radius)
        inner_r = radius - thickness
        inner = (cx - inner_r, cy - inner_r, cx + inner_r, cy + inner_r)

        draw.ellipse(outer, outline=RING_FILL, width=thickness)
        draw.ellipse(outer, outline=RING_BORDER, width=border)
        draw.ellipse(inner, outline=RING_BORDER, width=border)

        size = max(10, radius * RING_FONT_SCALE)
        font = self._font(size)
        line_height = size * LINE_SPACING
        stroke_width = max(1, int(round(size / 8)))
        top = cy - len(lines) * line_height / 2 + line_height / 2
        for i, line in enumerate(lines):
            _draw_text(
                draw, (cx, top + i * line_height), line, font,
                stroke_width, EMBLEM_TEXT_STROKE, EMBLEM_TEXT_FILL, anchor="mm",
            )

"""
Photo markup canvas.

Pillow port of the field photo annotation tool: freehand pen and eraser,
arrows, circles, rectangles and text, with an image-snapshot undo stack.

History model:
    snapshots[0] is the loaded image.  Every completed stroke, shape or text
    pushes a new snapshot and drops any redo tail.  ``undo``/``redo`` move the
    index (no-op at either end); ``clear`` returns to snapshot 0 and drops
    everything else.
"""

from __future__ import annotations

import io
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps

from roofops import config
from roofops.core.constants import (
    ARROW_HEAD_ANGLE_DEG, ARROW_HEAD_LENGTH, ERASER_WIDTH_MULTIPLIER,
    MARKUP_COLORS, MARKUP_DEFAULT_COLOR, MARKUP_DEFAULT_STROKE, TEXT_SIZE_MULTIPLIER,
)
from roofops.core.exceptions import ValidationFailedError
from roofops.core.utils import hex_to_rgb, is_hex_color
from roofops.domain.enums import MarkupTool

Point = Tuple[float, float]

ERASER_COLOR = (255, 255, 255)
MAX_STROKE_WIDTH = 50


def fit_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale ``(width, height)`` down to fit the box, keeping aspect ratio.  Never scales up."""
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def parse_color(value: Optional[str]) -> Tuple[int, int, int]:
    """Palette name or ``#rrggbb``."""
    if not value:
        return hex_to_rgb(MARKUP_DEFAULT_COLOR)
    value = MARKUP_COLORS.get(value.lower(), value)
    if not is_hex_color(value):
        raise ValidationFailedError(f"Invalid colour: {value}")
    return hex_to_rgb(value)


def _point(raw: Any) -> Point:
    if isinstance(raw, dict):
        raw = (raw.get("x"), raw.get("y"))
    try:
        x, y = raw
        return float(x), float(y)
    except (TypeError, ValueError):
        raise ValidationFailedError(f"Invalid point: {raw!r}")


def _width(raw: Any) -> int:
    try:
        width = int(raw if raw is not None else MARKUP_DEFAULT_STROKE)
    except (TypeError, ValueError):
        raise ValidationFailedError("stroke_width must be an integer")
    if not 1 <= width <= MAX_STROKE_WIDTH:
        raise ValidationFailedError(f"stroke_width must be between 1 and {MAX_STROKE_WIDTH}")
    return width


def load_font(size: int):
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default(size=size)


class MarkupCanvas:
    """An image plus its drawing history."""

    def __init__(
        self,
        image: Image.Image,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> None:
        max_width = max_width or config.MARKUP_MAX_WIDTH
        max_height = max_height or config.MARKUP_MAX_HEIGHT
        base = image.convert("RGB")
        size = fit_size(base.width, base.height, max_width, max_height)
        if size != base.size:
            base = base.resize(size, Image.LANCZOS)
        self._snapshots: List[Image.Image] = [base]
        self._index = 0

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs) -> "MarkupCanvas":
        try:
            img = Image.open(io.BytesIO(data))
            img = ImageOps.exif_transpose(img)
        except (OSError, ValueError) as exc:
            raise ValidationFailedError(f"Could not read image: {exc}")
        return cls(img, **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def image(self) -> Image.Image:
        return self._snapshots[self._index]

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def history_depth(self) -> int:
        return len(self._snapshots)

    @property
    def history_index(self) -> int:
        return self._index

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._snapshots) - 1

    def _begin(self) -> Tuple[Image.Image, ImageDraw.ImageDraw]:
        img = self.image.copy()
        return img, ImageDraw.Draw(img)

    def _commit(self, img: Image.Image) -> None:
        del self._snapshots[self._index + 1:]
        self._snapshots.append(img)
        self._index = len(self._snapshots) - 1

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        self._index -= 1
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._index += 1
        return True

    def clear(self) -> None:
        self._snapshots = self._snapshots[:1]
        self._index = 0

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def draw_stroke(
        self,
        points: Sequence[Point],
        color: Tuple[int, int, int],
        width: int,
        eraser: bool = False,
    ) -> None:
        """Freehand polyline with round joins and caps."""
        if not points:
            raise ValidationFailedError("A stroke needs at least one point")
        if eraser:
            color, width = ERASER_COLOR, width * ERASER_WIDTH_MULTIPLIER
        img, draw = self._begin()
        if len(points) > 1:
            draw.line(list(points), fill=color, width=width, joint="curve")
        r = width / 2
        for x, y in (points[0], points[-1]):
            draw.ellipse((x - r, y - r, x + r, y + r), fill=color)
        self._commit(img)

    def draw_arrow(self, start: Point, end: Point, color: Tuple[int, int, int], width: int) -> None:
        """Line with a filled head of ``ARROW_HEAD_LENGTH`` at ±30° from the shaft."""
        img, draw = self._begin()
        draw.line([start, end], fill=color, width=width)
        angle = math.atan2(end[1] - start[1], end[0] - start[0])
        spread = math.radians(ARROW_HEAD_ANGLE_DEG)
        head = [
            end,
            (end[0] - ARROW_HEAD_LENGTH * math.cos(angle - spread),
             end[1] - ARROW_HEAD_LENGTH * math.sin(angle - spread)),
            (end[0] - ARROW_HEAD_LENGTH * math.cos(angle + spread),
             end[1] - ARROW_HEAD_LENGTH * math.sin(angle + spread)),
        ]
        draw.polygon(head, fill=color)
        self._commit(img)

    def draw_circle(self, start: Point, end: Point, color: Tuple[int, int, int], width: int) -> None:
        """Centre at ``start``; radius is the distance to ``end``."""
        radius = math.hypot(end[0] - start[0], end[1] - start[1])
        img, draw = self._begin()
        cx, cy = start
        draw.ellipse((cx - radius, cy - radius, cx + radius, cy + radius), outline=color, width=width)
        self._commit(img)

    def draw_rectangle(self, start: Point, end: Point, color: Tuple[int, int, int], width: int) -> None:
        x0, x1 = sorted((start[0], end[0]))
        y0, y1 = sorted((start[1], end[1]))
        img, draw = self._begin()
        draw.rectangle((x0, y0, x1, y1), outline=color, width=width)
        self._commit(img)

    def draw_text(self, position: Point, text: str, color: Tuple[int, int, int], width: int) -> bool:
        """Blank text is ignored (no snapshot).  Font size is ``width * 6``."""
        if not text or not text.strip():
            return False
        img, draw = self._begin()
        draw.text(position, text, fill=color, font=load_font(width * TEXT_SIZE_MULTIPLIER))
        self._commit(img)
        return True

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def apply(self, action: Dict[str, Any]) -> None:
        """Apply one serialised action.

        ``{"type": "undo" | "redo" | "clear"}`` or
        ``{"tool": "pen", "points": [[x, y], ...], "color": "red", "stroke_width": 3}``,
        ``{"tool": "arrow" | "circle" | "rectangle", "start": [x, y], "end": [x, y], ...}``,
        ``{"tool": "text", "position": [x, y], "text": "...", ...}``.
        """
        kind = action.get("type")
        if kind == "undo":
            self.undo()
            return
        if kind == "redo":
            self.redo()
            return
        if kind == "clear":
            self.clear()
            return

        try:
            tool = MarkupTool(action.get("tool"))
        except ValueError:
            raise ValidationFailedError(f"Unknown markup tool: {action.get('tool')}")
        color = parse_color(action.get("color"))
        width = _width(action.get("stroke_width"))

        if tool in (MarkupTool.PEN, MarkupTool.ERASER):
            points = [_point(p) for p in action.get("points") or []]
            self.draw_stroke(points, color, width, eraser=tool == MarkupTool.ERASER)
        elif tool == MarkupTool.TEXT:
            self.draw_text(_point(action.get("position")), str(action.get("text") or ""), color, width)
        else:
            start, end = _point(action.get("start")), _point(action.get("end"))
            if tool == MarkupTool.ARROW:
                self.draw_arrow(start, end, color, width)
            elif tool == MarkupTool.CIRCLE:
                self.draw_circle(start, end, color, width)
            else:
                self.draw_rectangle(start, end, color, width)

    def replay(self, actions: Iterable[Dict[str, Any]]) -> None:
        for action in actions:
            if not isinstance(action, dict):
                raise ValidationFailedError("Each markup action must be an object")
            self.apply(action)

    def to_jpeg_bytes(self, quality: Optional[int] = None) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format="JPEG", quality=quality or config.MARKUP_JPEG_QUALITY)
        return buf.getvalue()

"""
Virtual-desktop geometry and target coordinate resolution.
"""

import logging
import math
from typing import Tuple

from screeninfo import get_monitors

log = logging.getLogger(__name__)

Point = Tuple[float, float]
Size = Tuple[float, float]


def virtual_desktop_bounds() -> Tuple[int, int, int, int]:
    """Return (x, y, width, height) spanning all monitors."""
    monitors = get_monitors()
    if not monitors:
        raise RuntimeError("No monitors reported")
    min_x = min(m.x for m in monitors)
    min_y = min(m.y for m in monitors)
    max_r = max(m.x + m.width for m in monitors)
    max_b = max(m.y + m.height for m in monitors)
    return int(min_x), int(min_y), int(max_r - min_x), int(max_b - min_y)


def virtual_desktop_origin() -> Tuple[int, int]:
    """Top-left corner of the virtual desktop (may be negative)."""
    x, y, _, _ = virtual_desktop_bounds()
    return x, y


def target_center(canvas_origin: Point, position: Point, target_size: Size) -> Tuple[int, int]:
    """
    Screen point a target clicks: its visual center, not its top-left corner.

    canvas_origin + position + target_size / 2, rounded half up to whole pixels.
    """
    x = canvas_origin[0] + position[0] + target_size[0] / 2
    y = canvas_origin[1] + position[1] + target_size[1] / 2
    return math.floor(x + 0.5), math.floor(y + 0.5)


def grid_offset(index: int, columns: int, spacing: float) -> Point:
    """Offset of the index-th cell in a left-to-right, top-to-bottom grid."""
    columns = max(1, columns)
    return (index % columns) * spacing, (index // columns) * spacing

"""Structural zones of the identity matrix.

Three 7x7 finder rings sit in the top-left, top-right and bottom-left corners,
each fenced off from the interior by an always-light separator. Row 6 and
column 6 carry alternating timing strips between the finders, and a single
dark module sits at (8, size - 8). Everything else is a data cell.
"""
from enum import Enum
from typing import NamedTuple, Optional

from healthpass.services.errors import InvalidSize

FINDER_SIZE = 7
MIN_SIZE = 21
DEFAULT_SIZE = MIN_SIZE
TIMING_LINE = 6


class Zone(Enum):
    FINDER = "finder"
    SEPARATOR = "separator"
    TIMING = "timing"
    DARK_MODULE = "dark_module"
    DATA = "data"


class Cell(NamedTuple):
    zone: Zone
    # None for data cells, whose value comes from the bit synthesizer.
    value: Optional[bool]


def validate_size(size) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise InvalidSize(size)
    if size < MIN_SIZE or size % 2 == 0:
        raise InvalidSize(size)
    return size


def is_finder(x: int, y: int, size: int) -> bool:
    far = size - FINDER_SIZE
    return (
        (x < FINDER_SIZE and y < FINDER_SIZE)
        or (x >= far and y < FINDER_SIZE)
        or (x < FINDER_SIZE and y >= far)
    )


def finder_bit(x: int, y: int, size: int) -> bool:
    """Ring value of a finder cell, in the local 7x7 frame of its corner."""
    far = size - FINDER_SIZE
    px = x - far if x >= far else x
    py = y - far if y >= far else y

    if px >= FINDER_SIZE or py >= FINDER_SIZE:
        return False
    if px in (0, 6) or py in (0, 6):
        return True
    if px in (1, 5) or py in (1, 5):
        return False
    if 2 <= px <= 4 and 2 <= py <= 4:
        return True
    return False


def is_separator(x: int, y: int, size: int) -> bool:
    edge = FINDER_SIZE
    far = size - FINDER_SIZE - 1
    return (
        ((x == edge or y == edge) and x <= edge and y <= edge)
        or ((x == far or y == edge) and x >= far and y <= edge)
        or ((x == edge or y == far) and x <= edge and y >= far)
    )


def is_timing(x: int, y: int, size: int) -> bool:
    start = FINDER_SIZE + 1
    stop = size - FINDER_SIZE - 1
    if y == TIMING_LINE and start <= x < stop:
        return True
    if x == TIMING_LINE and start <= y < stop:
        return True
    return False


def dark_module(size: int):
    return (FINDER_SIZE + 1, size - FINDER_SIZE - 1)


def classify(x: int, y: int, size: int = DEFAULT_SIZE) -> Cell:
    """Classify cell (x, y) of a ``size`` x ``size`` matrix.

    Regions touch at their boundaries, so the checks run in a fixed order:
    finder, separator, timing, dark module, data.
    """
    validate_size(size)
    if not (0 <= x < size and 0 <= y < size):
        raise ValueError(f"Cell ({x}, {y}) lies outside a {size}x{size} matrix")
    return classify_cell(x, y, size)


def classify_cell(x: int, y: int, size: int) -> Cell:
    """Zone and fixed value of (x, y); size and bounds are assumed valid."""
    if is_finder(x, y, size):
        return Cell(Zone.FINDER, finder_bit(x, y, size))
    if is_separator(x, y, size):
        return Cell(Zone.SEPARATOR, False)
    if is_timing(x, y, size):
        return Cell(Zone.TIMING, (x + y) % 2 == 0)
    if (x, y) == dark_module(size):
        return Cell(Zone.DARK_MODULE, True)
    return Cell(Zone.DATA, None)

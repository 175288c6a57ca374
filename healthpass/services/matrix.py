"""Identity matrix generation.

``generate`` is the only entry point the rest of the service uses: it
serializes a record, fingerprints the payload and fills a ``size`` x ``size``
grid cell by cell. Structural cells come from ``zones.classify``; data cells
mix one fingerprint bit with the low bit of one payload code unit.
"""
from typing import List, Sequence, Tuple

import numpy as np

from healthpass.services.fingerprint import code_units, fold
from healthpass.services.record import IdentityRecord, serialize
from healthpass.services.zones import DEFAULT_SIZE, Zone, classify_cell, validate_size


def _mix(index: int, fingerprint: int, units: Sequence[int]) -> bool:
    hash_bit = (fingerprint >> (index % 32)) & 1
    seed_bit = units[index % len(units)] & 1
    return (hash_bit ^ seed_bit) == 1


def data_bit(x: int, y: int, size: int, fingerprint: int, payload: str) -> bool:
    """Value of data cell (x, y) for a given fingerprint and payload."""
    units = code_units(payload)
    if not units:
        raise ValueError("payload must not be empty")
    return _mix(y * size + x, fingerprint, units)


class Matrix:
    """Immutable square grid of booleans, addressed as (x, y) = (column, row)."""

    __slots__ = ("_rows",)

    def __init__(self, rows: Sequence[Sequence[bool]]):
        frozen = tuple(tuple(bool(v) for v in row) for row in rows)
        if any(len(row) != len(frozen) for row in frozen):
            raise ValueError("matrix rows must form a square grid")
        self._rows = frozen

    @property
    def size(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> Tuple[Tuple[bool, ...], ...]:
        return self._rows

    def cell(self, x: int, y: int) -> bool:
        return self._rows[y][x]

    def to_list(self) -> List[List[bool]]:
        return [list(row) for row in self._rows]

    def to_array(self) -> np.ndarray:
        """Boolean array of shape (size, size), indexed [y, x]."""
        return np.array(self._rows, dtype=np.bool_)

    def __eq__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self._rows == other._rows

    def __hash__(self):
        return hash(self._rows)

    def __repr__(self):
        return f"Matrix(size={self.size})"


def generate(record: IdentityRecord, size: int = DEFAULT_SIZE) -> Matrix:
    """Build the identity matrix of ``record``.

    Raises InvalidSize or InvalidRecord before any cell is computed.
    """
    validate_size(size)
    payload = serialize(record)
    units = code_units(payload)
    fingerprint = fold(units)

    rows = []
    for y in range(size):
        row = []
        for x in range(size):
            cell = classify_cell(x, y, size)
            if cell.zone is Zone.DATA:
                row.append(_mix(y * size + x, fingerprint, units))
            else:
                row.append(cell.value)
        rows.append(row)
    return Matrix(rows)

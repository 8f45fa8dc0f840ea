from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

from harness_errors import InvalidMapError
from start_positions import Coordinate

EMPTY_CELL = "."
P1_MARK = "@"
P2_MARK = "$"


def read_map(path: Path) -> List[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    while lines and not lines[-1]:
        lines.pop()
    if not lines:
        raise InvalidMapError(f"{path} is empty")
    return lines


def dimensions(lines: Sequence[str]) -> Tuple[int, int]:
    # Width comes from the first row, like the engine reads it
    return len(lines), len(lines[0]) if lines else 0


def render(lines: Sequence[str]) -> str:
    return "".join(line + "\n" for line in lines)


def _place(row: str, col: int, mark: str) -> str:
    if col < 0 or col >= len(row):
        return row
    return row[:col] + mark + row[col + 1:]


def mutate(lines: Sequence[str], pos_a: Coordinate, pos_b: Coordinate) -> List[str]:
    """Return a copy of ``lines`` with exactly one P1 and one P2 start cell.

    Existing markers are blanked first so a map left over from an earlier run
    never ends up with two starts for the same side. Raises InvalidMapError if
    either marker could not be placed or the grid shape changed.
    """
    out = [row.replace(P1_MARK, EMPTY_CELL).replace(P2_MARK, EMPTY_CELL) for row in lines]

    for (r, c), mark in ((pos_a, P1_MARK), (pos_b, P2_MARK)):
        if 0 <= r < len(out):
            out[r] = _place(out[r], c, mark)

    if len(out) != len(lines) or any(len(a) != len(b) for a, b in zip(out, lines)):
        raise InvalidMapError("map shape changed during mutation")
    p1 = sum(row.count(P1_MARK) for row in out)
    p2 = sum(row.count(P2_MARK) for row in out)
    if p1 != 1 or p2 != 1:
        raise InvalidMapError(
            f"expected one {P1_MARK} and one {P2_MARK}, got {p1} and {p2} "
            f"(p1={pos_a}, p2={pos_b})"
        )
    return out

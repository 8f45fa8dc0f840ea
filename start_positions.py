from __future__ import annotations

from typing import Tuple

Coordinate = Tuple[int, int]

# rep % 4 -> (P1 vertical, P1 horizontal); P2 always takes the opposite quadrant
LAYOUTS = [
    ("top", "left"),
    ("top", "right"),
    ("bottom", "left"),
    ("bottom", "right"),
]


def map_hash(map_id: str) -> int:
    # First 4 bytes of the name as an unsigned little-endian int (zero padded)
    raw = map_id.encode("utf-8")[:4].ljust(4, b"\0")
    return int.from_bytes(raw, "little")


def layout(rep: int) -> Tuple[str, str]:
    return LAYOUTS[rep % 4]


def _near(n: int, seed: int) -> int:
    span = n // 4
    return span + (seed % span if span > 0 else 0)


def _far(n: int, seed: int) -> int:
    span = n // 4
    return 3 * n // 4 - (seed % span if span > 0 else 0)


def _clamp(v: int, n: int) -> int:
    return min(max(v, 0), n - 1)


def generate(map_id: str, rep: int, rows: int, cols: int) -> Tuple[Coordinate, Coordinate]:
    """Return fair starting cells ((p1_row, p1_col), (p2_row, p2_col)).

    Deterministic in all four arguments. The quadrant layout rotates with
    ``rep % 4`` so that four consecutive repetitions put P1 in every quadrant
    once; P2 is always placed in the diagonally opposite quadrant.
    """
    if rows < 1 or cols < 1:
        raise ValueError(f"map must be at least 1x1, got {rows}x{cols}")
    seed = rep * 1000 + map_hash(map_id)
    vert, horiz = layout(rep)

    if vert == "top":
        r1, r2 = _near(rows, seed), _far(rows, seed)
    else:
        r1, r2 = _far(rows, seed), _near(rows, seed)
    if horiz == "left":
        c1, c2 = _near(cols, seed), _far(cols, seed)
    else:
        c1, c2 = _far(cols, seed), _near(cols, seed)

    p1 = (_clamp(r1, rows), _clamp(c1, cols))
    p2 = (_clamp(r2, rows), _clamp(c2, cols))
    return p1, p2

from pathlib import Path

import pytest

from harness_errors import InvalidMapError
from map_mutator import P1_MARK, P2_MARK, dimensions, mutate, read_map, render


def count(lines, mark):
    return sum(row.count(mark) for row in lines)


def test_mutate_places_both_markers(small_map):
    out = mutate(small_map, (1, 1), (3, 3))
    assert out[1] == ".@.."
    assert out[3] == "...$"
    assert count(out, P1_MARK) == 1
    assert count(out, P2_MARK) == 1


def test_mutate_strips_stale_markers():
    base = ["@..$", "..@.", "$...", "...."]
    out = mutate(base, (3, 0), (0, 1))
    assert count(out, P1_MARK) == 1
    assert count(out, P2_MARK) == 1
    assert out[3][0] == P1_MARK
    assert out[0][1] == P2_MARK


def test_mutate_keeps_obstacles_and_input_untouched():
    base = ["#...", ".##.", "....", "..#."]
    snapshot = list(base)
    out = mutate(base, (0, 1), (3, 3))
    assert out[1] == ".##."
    assert out[0] == "#@.."
    assert base == snapshot


def test_mutate_fails_on_short_row():
    base = ["....", "..", "....", "...."]
    with pytest.raises(InvalidMapError):
        mutate(base, (0, 0), (1, 3))


def test_mutate_fails_on_row_out_of_range(small_map):
    with pytest.raises(InvalidMapError):
        mutate(small_map, (4, 0), (0, 0))
    with pytest.raises(InvalidMapError):
        mutate(small_map, (0, -1), (2, 2))


def test_mutate_fails_when_positions_collide(small_map):
    with pytest.raises(InvalidMapError):
        mutate(small_map, (2, 2), (2, 2))


def test_read_map_and_dimensions(tmp_path: Path):
    p = tmp_path / "map00"
    p.write_text(".....\n..@..\n.....\n\n")
    lines = read_map(p)
    assert lines == [".....", "..@..", "....."]
    assert dimensions(lines) == (3, 5)
    assert render(lines) == ".....\n..@..\n.....\n"


def test_read_map_rejects_empty_file(tmp_path: Path):
    p = tmp_path / "empty"
    p.write_text("\n")
    with pytest.raises(InvalidMapError):
        read_map(p)

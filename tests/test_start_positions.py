import pytest

from start_positions import generate, layout, map_hash


def test_generate_is_deterministic():
    a = generate("map01", 3, 15, 17)
    b = generate("map01", 3, 15, 17)
    assert a == b


def test_generate_depends_on_map_and_rep():
    results = {generate(m, r, 40, 40) for m in ("map00", "map01") for r in range(1, 6)}
    assert len(results) > 1


def test_generate_in_bounds_for_all_small_shapes():
    for rows in range(1, 13):
        for cols in range(1, 13):
            for rep in range(0, 9):
                for (r, c) in generate("map02", rep, rows, cols):
                    assert 0 <= r < rows
                    assert 0 <= c < cols


def test_layout_rotates_every_four():
    for rep in range(0, 12):
        assert layout(rep) == layout(rep + 4)
    assert len({layout(r) for r in range(4)}) == 4


def test_quadrants_on_large_map():
    # 20x20: near coordinates fall in [5, 9], far ones in [11, 15]
    (r1, c1), (r2, c2) = generate("map00", 0, 20, 20)
    assert r1 < 10 and c1 < 10
    assert r2 > 10 and c2 > 10

    (r1, c1), (r2, c2) = generate("map00", 1, 20, 20)
    assert r1 < 10 and c1 > 10
    assert r2 > 10 and c2 < 10

    (r1, c1), (r2, c2) = generate("map00", 2, 20, 20)
    assert r1 > 10 and c1 < 10
    assert r2 < 10 and c2 > 10

    (r1, c1), (r2, c2) = generate("map00", 3, 20, 20)
    assert r1 > 10 and c1 > 10
    assert r2 < 10 and c2 < 10


def test_small_map_positions():
    assert generate("tiny", 4, 4, 4) == ((1, 1), (3, 3))
    assert generate("tiny", 5, 4, 4) == ((1, 3), (3, 1))


def test_degenerate_map_falls_back_to_clamped_base():
    assert generate("m", 7, 1, 1) == ((0, 0), (0, 0))
    (r1, c1), (r2, c2) = generate("m", 2, 3, 2)
    assert 0 <= r1 < 3 and 0 <= r2 < 3
    assert 0 <= c1 < 2 and 0 <= c2 < 2


def test_generate_rejects_empty_map():
    with pytest.raises(ValueError):
        generate("m", 1, 0, 5)


def test_map_hash_reads_first_four_bytes_little_endian():
    assert map_hash("map00") == int.from_bytes(b"map0", "little")
    assert map_hash("ab") == ord("a") + ord("b") * 256
    assert map_hash("") == 0

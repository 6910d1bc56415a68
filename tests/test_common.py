"""Tests for shared helpers: stdin piping, input resolution and the worker pool."""

import asyncio
from pathlib import Path

import pytest

import uhd_skills.common as c


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    return path


def test_parse_piped_paths_newlines() -> None:
    """Plain text is one path per line, blank lines ignored."""
    assert c.parse_piped_paths("a.jpg\n\n  b.png  \n") == ["a.jpg", "b.png"]


def test_parse_piped_paths_json_shapes() -> None:
    """Objects with ``path``/``paths`` and string arrays are all accepted."""
    assert c.parse_piped_paths('{"path": "one.jpg"}') == ["one.jpg"]
    assert c.parse_piped_paths('{"paths": ["a.jpg", "b.jpg"]}') == ["a.jpg", "b.jpg"]
    assert c.parse_piped_paths('["x.avif", "y.webp"]') == ["x.avif", "y.webp"]


def test_parse_piped_paths_empty_and_malformed() -> None:
    """Empty input yields nothing; malformed JSON falls back to newline parsing."""
    assert c.parse_piped_paths("   \n") == []
    assert c.parse_piped_paths('{"path": ') == ['{"path":']
    assert c.parse_piped_paths('{"other": 1}') == ['{"other": 1}']


def test_resolve_inputs_orders_explicit_first_and_dedups(tmp_path: Path) -> None:
    """Explicit files come before directory expansions and appear only once."""
    explicit = _touch(tmp_path / "z.jpg")
    _touch(tmp_path / "a.png")
    _touch(tmp_path / "notes.txt")
    _touch(tmp_path / "sub" / "deep.jpg")

    flat = c.resolve_inputs([explicit, tmp_path, explicit])
    assert [p.name for p in flat] == ["z.jpg", "a.png"]

    deep = c.resolve_inputs([tmp_path], recursive=True)
    assert {p.name for p in deep} == {"a.png", "z.jpg", "deep.jpg"}


def test_resolve_inputs_skips_missing(tmp_path: Path) -> None:
    """Missing paths are dropped rather than raising."""
    assert c.resolve_inputs([tmp_path / "missing.jpg"]) == []


def test_run_pool_bounded_and_exactly_once() -> None:
    """No more than ``concurrency`` workers run at once and each item is processed once."""
    seen: list[int] = []
    in_flight = 0
    peak = 0

    async def worker(item: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        seen.append(item)
        if item == 3:
            msg = "boom"
            raise ValueError(msg)
        return item * 10

    results = asyncio.run(c.run_pool(list(range(8)), worker, 3))

    assert peak <= 3
    assert sorted(seen) == list(range(8))
    assert isinstance(results[3], ValueError)
    assert [r for i, r in enumerate(results) if i != 3] == [0, 10, 20, 40, 50, 60, 70]

    ok, failed = c.split_results(results)
    assert failed == 1
    assert len(ok) == 7


def test_run_pool_empty() -> None:
    """An empty item list returns an empty result list."""

    async def worker(item: int) -> int:
        return item

    assert asyncio.run(c.run_pool([], worker, 4)) == []


def test_run_blocking_pool_keeps_order() -> None:
    """Blocking functions run in threads and results keep input order."""
    assert c.run_blocking_pool([3, 1, 2], lambda n: n * n, 2) == [9, 1, 4]


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (3 * 1024 * 1024, "3.0 MB")],
)
def test_human_size(size: int, expected: str) -> None:
    """Byte counts are rendered with one decimal above 1 KB."""
    assert c.human_size(size) == expected


def test_percent_change() -> None:
    """Reduction is relative to the original size."""
    assert c.percent_change(1000, 250) == "75.0%"
    assert c.percent_change(0, 10) == "0.0%"
    assert c.percent_change(100, 150) == "-50.0%"


def test_parse_csv() -> None:
    """Comma lists are split, trimmed and lowercased."""
    assert c.parse_csv(" AVIF, webp ,,jpeg") == ["avif", "webp", "jpeg"]
    assert c.parse_csv(None) == []

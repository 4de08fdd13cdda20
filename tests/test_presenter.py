"""Tests for asmscan.presenter."""

from __future__ import annotations

import io

from asmscan.models import AssemblyVersion, FileMetadataRecord
from asmscan.presenter import HEADERS, print_table, render_table, sort_records


def _record(name: str, version: tuple, path: str, token: bytes = b"") -> FileMetadataRecord:
    return FileMetadataRecord(
        relative_path=path,
        name=name,
        version=AssemblyVersion(*version),
        public_key_token=token,
    )


def _error(path: str) -> FileMetadataRecord:
    return FileMetadataRecord(relative_path=path, is_error=True, error="bad")


def test_sort_orders_by_name_then_newest_version_then_path() -> None:
    records = [
        _record("Zeta", (1, 0, 0, 0), "z.dll"),
        _record("Alpha", (1, 2, 0, 0), "b/Alpha.dll"),
        _record("Alpha", (1, 10, 0, 0), "c/Alpha.dll"),
        _record("Alpha", (1, 2, 0, 0), "a/Alpha.dll"),
        _record("Alpha", (1, 2, 0, 5), "d/Alpha.dll"),
    ]

    ordered = sort_records(records)

    assert [(r.name, str(r.version), r.relative_path) for r in ordered] == [
        ("Alpha", "1.10.0.0", "c/Alpha.dll"),
        ("Alpha", "1.2.0.5", "d/Alpha.dll"),
        ("Alpha", "1.2.0.0", "a/Alpha.dll"),
        ("Alpha", "1.2.0.0", "b/Alpha.dll"),
        ("Zeta", "1.0.0.0", "z.dll"),
    ]


def test_sort_compares_versions_numerically() -> None:
    records = [
        _record("Lib", (9, 0, 0, 0), "nine.dll"),
        _record("Lib", (10, 0, 0, 0), "ten.dll"),
    ]

    assert [r.relative_path for r in sort_records(records)] == ["ten.dll", "nine.dll"]


def test_sort_is_case_sensitive_on_name() -> None:
    records = [_record("alpha", (1, 0, 0, 0), "l.dll"), _record("Beta", (1, 0, 0, 0), "u.dll")]

    assert [r.name for r in sort_records(records)] == ["Beta", "alpha"]


def test_sort_keeps_input_order_for_identical_keys() -> None:
    first = _record("Same", (1, 0, 0, 0), "same.dll", token=b"\x01" * 8)
    second = _record("Same", (1, 0, 0, 0), "same.dll", token=b"\x02" * 8)

    assert sort_records([first, second]) == [first, second]
    assert sort_records([second, first]) == [second, first]


def test_sort_drops_error_records() -> None:
    records = [_error("broken.dll"), _record("Ok", (1, 0, 0, 0), "ok.dll"), _error("x.dll")]

    ordered = sort_records(records)

    assert [r.relative_path for r in ordered] == ["ok.dll"]
    assert len(ordered) <= len(records)


def test_render_table_has_headers_and_aligned_rows() -> None:
    records = [
        _record("Contoso.Core", (4, 2, 17, 301), "lib/Contoso.Core.dll", token=bytes.fromhex("b77a5c561934e089")),
        _record("X", (1, 0, 0, 0), "X.dll"),
    ]

    lines = render_table(records).splitlines()

    header = lines[0]
    for title in HEADERS:
        assert title in header
    assert set(lines[1].replace(" ", "")) == {"-"}
    assert "b77a5c561934e089" in lines[2]
    assert "4.2.17.301" in lines[2]
    assert lines[2].index("lib/Contoso.Core.dll") == lines[3].index("X.dll")
    assert lines[2].index("4.2.17.301") == lines[3].index("1.0.0.0")


def test_render_table_keeps_versions_as_text() -> None:
    output = render_table([_record("Lib", (1, 10, 0, 0), "Lib.dll")])

    assert "1.10.0.0" in output


def test_render_table_empty_shows_headers_only() -> None:
    output = render_table([])

    for title in HEADERS:
        assert title in output
    assert ".dll" not in output


def test_print_table_sorts_filters_and_writes() -> None:
    stream = io.StringIO()
    records = [_record("B", (1, 0, 0, 0), "B.dll"), _error("Bad.dll"), _record("A", (1, 0, 0, 0), "A.dll")]

    print_table(records, stream=stream)

    output = stream.getvalue()
    assert output.endswith("\n")
    assert output.index("A.dll") < output.index("B.dll")
    assert "Bad.dll" not in output


def test_print_table_is_idempotent() -> None:
    records = [_record("B", (2, 0, 0, 0), "B.dll"), _record("A", (1, 0, 0, 0), "A.dll")]
    first, second = io.StringIO(), io.StringIO()

    print_table(records, stream=first)
    print_table(records, stream=second)

    assert first.getvalue() == second.getvalue()

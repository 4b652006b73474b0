from __future__ import annotations

import numpy as np

from scene_rpc.protocol.arrays import Array
from scene_rpc.protocol.validation import (
    ValidationReport,
    check_byte_length,
    check_non_empty,
    check_rank,
    check_shape,
    check_type,
    format_shape,
)


def _arr(type_: str, shape, nbytes: int | None = None) -> Array:
    if nbytes is None:
        nbytes = int(type_[-1]) * int(np.prod(shape)) if shape else 0
    return Array.from_dict({"type": type_, "shape": list(shape), "data": bytes(nbytes)})


def test_format_shape():
    assert format_shape(()) == "[]"
    assert format_shape((0, 3)) == "[0, 3]"


def test_check_rank_reports_allowed_ranks_and_shape():
    report = ValidationReport()
    assert check_rank(_arr("<i4", (2, 3)), [1, 2], report, field="faces array")
    assert report.ok

    assert not check_rank(_arr("<i4", (2, 3, 1)), [1, 2], report, field="faces array")
    assert report.format() == "invalid faces array: expected rank to be in (1, 2) but got shape [2, 3, 1]"


def test_check_shape_wildcard_dimension():
    assert check_shape(_arr("<f4", (7, 3)), [-1, 3])
    assert check_shape(_arr("<f4", (0, 3)), [-1, 3])

    report = ValidationReport()
    assert not check_shape(_arr("<f4", (4, 2)), [-1, 3], report)
    assert str(report) == "invalid array: expected shape [?, 3] but got [4, 2]"


def test_check_shape_rank_mismatch_uses_rank_message():
    report = ValidationReport()
    assert not check_shape(_arr("<f4", (12,)), [-1, 3], report)
    assert "expected rank to be in (2)" in report.format()


def test_check_non_empty():
    report = ValidationReport()
    assert check_non_empty(_arr("<f4", (1, 3)), report)
    assert not check_non_empty(_arr("<f4", (0, 3)), report, field="vertices array")
    assert not check_non_empty(Array.empty(), report)
    assert report.format(sep="\n").splitlines() == [
        "invalid vertices array: expected non empty array but got array with shape [0, 3]",
        "invalid array: expected non empty array but got array with shape []",
    ]


def test_check_type_is_exact_membership():
    allowed = ("<i4", "<i8")
    assert check_type(_arr("<i8", (3,)), allowed)

    report = ValidationReport()
    assert not check_type(_arr("<i2", (3,)), allowed, report, field="faces array")
    assert not check_type(_arr(">i4", (3,)), allowed)
    assert report.format() == "invalid faces array: expected array type to be one of (<i4, <i8) but got <i2"


def test_checks_without_report_only_return_bool():
    arr = _arr("<f4", (0,))
    assert check_non_empty(arr) is False
    assert check_rank(arr, [2]) is False
    assert check_shape(arr, [3]) is False
    assert check_type(arr, ["<f8"]) is False


def test_check_byte_length():
    assert check_byte_length(Array.empty())
    assert check_byte_length(_arr("<f4", (2, 3)))

    report = ValidationReport()
    assert not check_byte_length(_arr("<f4", (2, 3), nbytes=20), report, field="vertices array")
    assert report.fields() == ("vertices array",)
    assert "24 bytes for shape [2, 3] of <f4" in report.format()
    assert "20 bytes" in report.format()

    report = ValidationReport()
    assert not check_byte_length(_arr("<c8", (1,), nbytes=8), report)
    assert "supported array type" in report.format()


def test_report_collects_in_order():
    report = ValidationReport()
    report.add("a", "x", "y")
    report.add("mesh_data message")
    other = ValidationReport()
    other.add("b", "1", "2")
    report.extend(other)

    assert len(report) == 3
    assert report.fields() == ("a", "mesh_data message", "b")
    assert [f.format() for f in report] == [
        "invalid a: expected x but got y",
        "invalid mesh_data message",
        "invalid b: expected 1 but got 2",
    ]


def test_vertex_shape_family():
    for shape in ((5, 3), (0, 3)):
        assert check_shape(_arr("<f4", shape), [-1, 3])
    for shape in ((5, 4), (5,)):
        assert not check_shape(_arr("<f4", shape), [-1, 3])
    assert check_non_empty(_arr("<f4", (5, 3)))
    assert not check_non_empty(_arr("<f4", (0, 3)))

"""Predicate checks over :class:`~scene_rpc.protocol.arrays.Array`.

Every check returns ``True``/``False`` and never raises. When a
:class:`ValidationReport` is passed in, a failing check appends one
:class:`ValidationFailure` describing the field, what was expected and what
was found. Presentation is left to :meth:`ValidationReport.format`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

from .arrays import Array


def format_shape(shape: Iterable[int]) -> str:
    return "[" + ", ".join(str(int(d)) for d in shape) + "]"


def _format_expected_shape(expected: Sequence[int]) -> str:
    return "[" + ", ".join("?" if d == -1 else str(int(d)) for d in expected) + "]"


@dataclass(frozen=True)
class ValidationFailure:
    """One failed constraint on one field."""

    field: str
    expected: str = ""
    actual: str = ""

    def format(self) -> str:
        if not self.expected and not self.actual:
            return f"invalid {self.field}"
        return f"invalid {self.field}: expected {self.expected} but got {self.actual}"


@dataclass
class ValidationReport:
    """Ordered, append-only list of validation failures."""

    failures: list[ValidationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def add(self, field: str, expected: str = "", actual: str = "") -> None:
        self.failures.append(ValidationFailure(field=field, expected=expected, actual=actual))

    def extend(self, other: "ValidationReport") -> None:
        self.failures.extend(other.failures)

    def fields(self) -> tuple[str, ...]:
        return tuple(f.field for f in self.failures)

    def format(self, sep: str = "; ") -> str:
        return sep.join(f.format() for f in self.failures)

    def __iter__(self) -> Iterator[ValidationFailure]:
        return iter(self.failures)

    def __len__(self) -> int:
        return len(self.failures)

    def __str__(self) -> str:
        return self.format()


def check_rank(
    array: Array,
    allowed_ranks: Sequence[int],
    report: Optional[ValidationReport] = None,
    *,
    field: str = "array",
) -> bool:
    """True iff ``array.ndim`` is one of *allowed_ranks*."""

    if array.ndim in allowed_ranks:
        return True
    if report is not None:
        ranks = ", ".join(str(int(r)) for r in allowed_ranks)
        report.add(field, f"rank to be in ({ranks})", f"shape {format_shape(array.shape)}")
    return False


def check_shape(
    array: Array,
    expected: Sequence[int],
    report: Optional[ValidationReport] = None,
    *,
    field: str = "array",
) -> bool:
    """Match the shape against *expected*; ``-1`` accepts any non-negative size."""

    if not check_rank(array, [len(expected)], report, field=field):
        return False
    for want, got in zip(expected, array.shape):
        if (want != -1 and want != got) or got < 0:
            if report is not None:
                report.add(field, f"shape {_format_expected_shape(expected)}", format_shape(array.shape))
            return False
    return True


def check_non_empty(
    array: Array,
    report: Optional[ValidationReport] = None,
    *,
    field: str = "array",
) -> bool:
    """Reject arrays with an empty shape or zero elements."""

    if array.shape and math.prod(array.shape) != 0:
        return True
    if report is not None:
        report.add(field, "non empty array", f"array with shape {format_shape(array.shape)}")
    return False


def check_type(
    array: Array,
    allowed_tags: Sequence[str],
    report: Optional[ValidationReport] = None,
    *,
    field: str = "array",
) -> bool:
    """Exact type-tag membership; no coercion between widths or byte orders."""

    if array.type in allowed_tags:
        return True
    if report is not None:
        report.add(field, f"array type to be one of ({', '.join(allowed_tags)})", array.type or "''")
    return False


def check_byte_length(
    array: Array,
    report: Optional[ValidationReport] = None,
    *,
    field: str = "array",
) -> bool:
    """Payload length must equal ``itemsize * prod(shape)``.

    Arrays that carry no shape and no bytes (the "not supplied" value) pass.
    """

    if not array.shape and array.nbytes == 0:
        return True
    want = array.expected_nbytes()
    if want is None:
        if report is not None:
            report.add(field, "a supported array type", repr(array.type))
        return False
    if any(d < 0 for d in array.shape):
        if report is not None:
            report.add(field, "non-negative dimensions", f"shape {format_shape(array.shape)}")
        return False
    if want == array.nbytes:
        return True
    if report is not None:
        report.add(
            field,
            f"{want} bytes for shape {format_shape(array.shape)} of {array.type}",
            f"{array.nbytes} bytes",
        )
    return False


__all__ = [
    "ValidationFailure",
    "ValidationReport",
    "check_byte_length",
    "check_non_empty",
    "check_rank",
    "check_shape",
    "check_type",
    "format_shape",
]

"""Tolerant delimited-text row parser.

Records are split with the stdlib :mod:`csv` module (doubled-quote escaping,
quoted delimiters and embedded newlines). A record whose width differs from
the expected width is excluded and recorded as a :class:`RowError`; only the
aggregate error rate can fail the parse.
"""

from __future__ import annotations

import csv
import io
import itertools
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .errors import ParseError
from .logging_setup import get_logger
from .models import RawRow, RowError

_LOG = get_logger("bank_import.parser")


@dataclass(frozen=True, slots=True)
class ParsedTable:
    header: tuple[str, ...] | None
    rows: tuple[RawRow, ...]
    errors: tuple[RowError, ...]
    total: int

    @property
    def error_rate(self) -> float:
        return len(self.errors) / self.total if self.total else 0.0


def _is_blank(cells: Sequence[str]) -> bool:
    return all(not c.strip() for c in cells)


def _trim_trailing_empty(cells: Sequence[str]) -> list[str]:
    out = list(cells)
    while out and not out[-1].strip():
        out.pop()
    return out


def check_error_ceiling(errors: int, total: int, ceiling: float) -> float:
    """Return the error rate; raise :class:`ParseError` when it exceeds ``ceiling``."""

    rate = errors / total if total else 0.0
    if rate > ceiling:
        raise ParseError(
            f"{errors} of {total} rows are malformed ({rate:.1%} > {ceiling:.0%} ceiling)",
            error_rate=rate,
        )
    return rate


class RowParser:
    """Split text into :class:`RawRow` values.

    Parameters
    ----------
    delimiter:
        Field delimiter (one character).
    skip_rows:
        Non-blank records to drop before the header (account preambles).
    has_header:
        Whether the first record after ``skip_rows`` is a header.
    expected_fields:
        Width of a headerless file; defaults to the first data row's width.
    error_ceiling:
        Highest tolerated ``malformed / total`` ratio.
    """

    def __init__(
        self,
        delimiter: str = ",",
        *,
        skip_rows: int = 0,
        has_header: bool = True,
        expected_fields: int | None = None,
        error_ceiling: float = 0.10,
    ) -> None:
        if len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self.skip_rows = skip_rows
        self.has_header = has_header
        self.expected_fields = expected_fields
        self.error_ceiling = error_ceiling

    def _records(self, text: str) -> Iterator[tuple[int, list[str] | None, str | None]]:
        """Yield ``(start_line, cells, error)`` for every non-blank record."""

        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter)
        start = 1
        while True:
            try:
                cells = next(reader)
            except StopIteration:
                return
            except csv.Error as exc:
                yield start, None, f"unparsable record: {exc}"
                start = reader.line_num + 1
                continue
            line = start
            start = reader.line_num + 1
            if _is_blank(cells):
                continue
            yield line, cells, None

    def open(self, text: str) -> tuple[tuple[str, ...] | None, Iterator[RawRow | RowError]]:
        """Read the preamble and header eagerly; return the header and a lazy row stream."""

        records = self._records(text)
        skipped = 0
        pending: list[tuple[int, list[str] | None, str | None]] = []
        for rec in records:
            if skipped < self.skip_rows:
                skipped += 1
                continue
            pending.append(rec)
            break

        header: tuple[str, ...] | None = None
        expected = self.expected_fields
        if self.has_header and pending and pending[0][1] is not None:
            _, cells, _ = pending.pop()
            header = tuple(c.strip() for c in _trim_trailing_empty(cells or []))
            expected = len(header)

        def stream() -> Iterator[RawRow | RowError]:
            width = expected
            for line, cells, error in itertools.chain(pending, records):
                if cells is None:
                    yield RowError(line_number=line, reason=error or "unparsable record")
                    continue
                if width is None:
                    width = len(cells)
                if len(cells) > width and _is_blank(cells[width:]):
                    cells = cells[:width]
                if len(cells) != width:
                    yield RowError(
                        line_number=line,
                        reason=f"expected {width} fields, found {len(cells)}",
                    )
                    continue
                yield RawRow(cells=tuple(cells), line_number=line)

        return header, stream()

    def iter_rows(self, text: str) -> Iterator[RawRow | RowError]:
        _, rows = self.open(text)
        return rows

    def parse(self, text: str) -> ParsedTable:
        """Parse the whole text, enforcing the error ceiling."""

        header, stream = self.open(text)
        rows: list[RawRow] = []
        errors: list[RowError] = []
        for item in stream:
            if isinstance(item, RowError):
                errors.append(item)
            else:
                rows.append(item)
        total = len(rows) + len(errors)
        rate = check_error_ceiling(len(errors), total, self.error_ceiling)
        _LOG.debug("parse:done rows=%d errors=%d rate=%.3f", len(rows), len(errors), rate)
        return ParsedTable(header=header, rows=tuple(rows), errors=tuple(errors), total=total)


__all__ = ["ParsedTable", "RowParser", "check_error_ceiling"]

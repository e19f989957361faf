import textwrap

import pytest

from bank_import.errors import ParseError
from bank_import.models import RawRow, RowError
from bank_import.parser import RowParser, check_error_ceiling


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


def test_quoted_fields_and_line_numbers():
    text = _dedent(
        '''
        Date,Amount,Description
        01/02/2024,-1.00,"multi
        line, with comma"
        02/02/2024,-2.00,"He said ""hi"""
        '''
    )

    table = RowParser(",").parse(text)

    assert table.header == ("Date", "Amount", "Description")
    assert table.rows == (
        RawRow(cells=("01/02/2024", "-1.00", "multi\nline, with comma"), line_number=2),
        RawRow(cells=("02/02/2024", "-2.00", 'He said "hi"'), line_number=4),
    )
    assert table.errors == ()


def test_blank_lines_are_skipped_but_counted():
    text = "Date,Amount\n\n01/02/2024,-1.00\n   \n02/02/2024,-2.00\n"

    table = RowParser(",").parse(text)

    assert [r.line_number for r in table.rows] == [3, 5]
    assert table.total == 2


def test_field_count_mismatch_is_a_row_error():
    text = _dedent(
        """
        Date,Amount,Description
        01/02/2024,-1.00,ok
        01/02/2024,-1.00
        01/02/2024,-1.00,ok,,
        01/02/2024,-1.00,bad,extra
        """
    )

    table = RowParser(",", error_ceiling=1.0).parse(text)

    assert [r.line_number for r in table.rows] == [2, 4]
    assert table.rows[1].cells == ("01/02/2024", "-1.00", "ok")
    assert table.errors == (
        RowError(line_number=3, reason="expected 3 fields, found 2"),
        RowError(line_number=5, reason="expected 3 fields, found 4"),
    )
    assert table.error_rate == pytest.approx(0.5)


def test_skip_rows_and_headerless():
    text = _dedent(
        """
        Account 123
        01/02/2024,-1.00,a
        02/02/2024,-2.00,b
        """
    )

    header, rows = RowParser(",", skip_rows=1, has_header=False).open(text)

    assert header is None
    assert [r.cells[2] for r in rows] == ["a", "b"]


def test_header_trailing_empty_cells_are_trimmed():
    text = "Date;Amount;Text;\n01.02.2024;-1,00;x;\n"

    table = RowParser(";").parse(text)

    assert table.header == ("Date", "Amount", "Text")
    assert table.rows[0].cells == ("01.02.2024", "-1,00", "x")


def test_error_ceiling():
    rows = "\n".join(["01/02/2024,-1.00,ok"] * 17 + ["01/02/2024,-1.00"] * 3)
    text = "Date,Amount,Description\n" + rows + "\n"

    with pytest.raises(ParseError) as excinfo:
        RowParser(",", error_ceiling=0.10).parse(text)
    assert excinfo.value.error_rate == pytest.approx(0.15)

    assert check_error_ceiling(1, 20, 0.10) == pytest.approx(0.05)
    assert check_error_ceiling(0, 0, 0.10) == 0.0


def test_delimiter_must_be_single_character():
    with pytest.raises(ValueError):
        RowParser(";;")

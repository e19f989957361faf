import textwrap

from bank_import.config import ImportSettings
from bank_import.sniffer import ContentSniffer, decode_content, detect_header, looks_binary


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


def _sniff(content, **settings):
    return ContentSniffer(ImportSettings(**settings)).sniff(content)


def test_four_field_comma_file():
    text = _dedent(
        """
        Date,Amount,Description,Balance
        15/01/2024,-4.50,Coffee Shop,995.50
        16/01/2024,2500.00,Salary,3495.50
        17/01/2024,-120.00,Power Co,3375.50
        """
    )

    result = _sniff(text)

    assert result.delimiter == ","
    assert result.field_count == 4
    assert result.consistent is True
    assert result.has_header is True
    assert result.preamble_lines == 0
    assert result.sample[0] == ("Date", "Amount", "Description", "Balance")


def test_semicolon_beats_comma_with_decimal_commas():
    text = _dedent(
        """
        Datum;Betrag;Text
        01.02.2024;-12,50;REWE
        02.02.2024;1.200,00;Gehalt
        """
    )

    result = _sniff(text)

    assert result.delimiter == ";"
    assert result.field_count == 3
    assert result.consistent is True


def test_tab_and_pipe_delimiters():
    assert _sniff("Date\tAmount\tMemo\n2024-01-01\t-1.00\tx\n").delimiter == "\t"
    assert _sniff("Date|Amount|Memo\n2024-01-01|-1.00|x\n").delimiter == "|"


def test_trailing_empty_cells_do_not_break_consistency():
    text = _dedent(
        """
        Date,Description,Debit,Credit
        01/15/2024,Corner Store,12.34,
        01/16/2024,Payroll,,50.00
        """
    )

    result = _sniff(text)

    assert result.consistent is True
    assert result.field_count == 4


def test_preamble_lines_are_skipped():
    text = _dedent(
        """
        Account Number: 12-3456-7890123-00

        Date,Amount,Description
        15/01/2024,-4.50,Coffee Shop
        16/01/2024,2500.00,Salary
        """
    )

    result = _sniff(text)

    assert result.preamble_lines == 1
    assert result.delimiter == ","
    assert result.sample[0] == ("Date", "Amount", "Description")
    assert result.has_header is True


def test_headerless_file():
    text = _dedent(
        """
        01/15/2024,-45.67,COFFEE BAR
        01/16/2024,1200.00,PAYROLL ACME
        """
    )

    assert _sniff(text).has_header is False


def test_inconsistent_file_falls_back_to_modal_width():
    text = _dedent(
        """
        a,b,c
        1,2
        1,2,3,4
        5,6,7
        8,9
        1,2,3,4,5
        """
    )

    result = _sniff(text)

    assert result.consistent is False
    assert result.delimiter == ","
    assert result.field_count == 3


def test_wide_bad_row_is_not_mistaken_for_preamble():
    rows = [f"{d:02d}/01/2024,-{d}.00,Shop {d},,100.00" for d in range(4, 13)]
    text = (
        "Date,Amount,Description,Reference,Balance\n"
        "02/01/2024,-2.00,Bakery,,98.00\n"
        "03/01/2024,-4.50,EFTPOS Coffee,Shop,ref,995.50\n" + "\n".join(rows) + "\n"
    )

    result = _sniff(text)

    assert result.consistent is False
    assert result.preamble_lines == 0
    assert result.delimiter == ","
    assert result.field_count == 5
    assert result.sample[0] == ("Date", "Amount", "Description", "Reference", "Balance")


def test_decode_utf8_bom_and_ascii():
    decoded = decode_content(b"\xef\xbb\xbfDate,Amount\n")
    assert decoded.encoding == "utf-8"
    assert decoded.bom == "utf-8"
    assert decoded.text == "Date,Amount\n"

    plain = decode_content(b"Date,Amount\n")
    assert plain.encoding == "utf-8"
    assert plain.bom is None
    assert plain.ambiguous is False


def test_decode_utf16_with_bom():
    data = "Date,Amount,Description\n2024-01-01,-1.00,Café\n".encode("utf-16")

    assert looks_binary(data) is False
    decoded = decode_content(data)
    assert decoded.encoding.startswith("utf-16")
    assert decoded.text.startswith("Date,Amount")
    assert "Café" in decoded.text


def test_decode_latin1_is_flagged_ambiguous():
    decoded = decode_content("Datum;Text\n01.02.2024;Café\n".encode("latin-1"))

    assert decoded.encoding == "latin-1"
    assert decoded.ambiguous is True
    assert "Café" in decoded.text


def test_looks_binary():
    assert looks_binary(b"PK\x03\x04\x00\x00\x08\x00") is True
    assert looks_binary(b"Date,Amount\n") is False


def test_detect_header_rules():
    assert detect_header([["Date", "Amount", "Description"], ["2024-01-01", "-1.00", "x"]]) is True
    assert detect_header([["2024-01-01", "-1.00", "x"], ["2024-01-02", "-2.00", "y"]]) is False
    # Row 2 mostly text: not a header/data split.
    assert detect_header([["Name", "City", "Note"], ["Alice", "Paris", "1"]]) is False
    assert detect_header([["Date", "Amount", "Description"]]) is True

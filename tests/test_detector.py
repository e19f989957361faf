# ruff: noqa: E501
import textwrap

from bank_import.catalog import AmountConvention
from bank_import.config import ImportSettings
from bank_import.detector import GENERIC_KEY, FormatDetector, resolve_column
from bank_import.sniffer import ContentSniffer


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


def _detect(text: str, filename_hint: str | None = None):
    settings = ImportSettings()
    sniff = ContentSniffer(settings).sniff(text)
    return FormatDetector(settings=settings).detect(
        sniff, content_sample=text, filename_hint=filename_hint
    )


def test_detects_anz_nz_from_exact_header():
    text = _dedent(
        """
        Date,Amount,Description,Reference,Balance
        15/01/2024,-4.50,EFTPOS Coffee Shop,1234567,995.50
        16/01/2024,2500.00,TRANSFER Salary ACME,,3495.50
        """
    )

    result = _detect(text)

    assert result.recognized is True
    assert result.descriptor.key == "ANZ_NZ"
    assert result.score == 50
    assert abs(result.confidence - 50 / 70) < 1e-9
    assert result.ranking[0].key == "ANZ_NZ"


def test_filename_hint_adds_to_score():
    text = _dedent(
        """
        Date,Amount,Description,Reference,Balance
        15/01/2024,-4.50,EFTPOS Coffee Shop,1234567,995.50
        """
    )

    plain = _detect(text)
    hinted = _detect(text, filename_hint="export-anz.co.nz-2024.csv")

    assert hinted.descriptor.key == "ANZ_NZ"
    assert hinted.score == plain.score + 5


def test_preamble_file_picks_asb_over_anz():
    text = _dedent(
        """
        Bank account 12-3456-7890123-00
        Date,Amount,Description,Category,Balance
        15/01/2024,-4.50,EFTPOS - Coffee Shop,Dining,995.50
        """
    )

    result = _detect(text)

    assert result.descriptor.key == "ASB_NZ"


def test_ties_go_to_earlier_registration():
    # TD, Scotiabank, BMO and CIBC share this header.
    text = _dedent(
        """
        Date,Description,Amount
        01/15/2024,Coffee Bar,-4.50
        """
    )

    assert _detect(text).descriptor.key == "TD_CA"


def test_detects_debit_credit_and_type_flag_formats():
    citi = _dedent(
        """
        Date,Description,Debit,Credit
        01/15/2024,Corner Store,12.34,
        01/16/2024,Payroll,,50.00
        """
    )
    ing = _dedent(
        """
        Datum;Naam / Omschrijving;Rekening;Tegenrekening;Code;Af Bij;Bedrag (EUR);Mutatiesoort;Mededelingen
        20240105;Albert Heijn;NL01INGB0001;NL02ABNA0002;BA;Af;12,34;Betaalautomaat;Pasvolgnummer 001
        """
    )

    assert _detect(citi).descriptor.key == "CITI_US"
    assert _detect(ing).descriptor.key == "ING_NL"


def test_headerless_wells_fargo():
    text = _dedent(
        """
        "01/15/2024","-45.67","*","","DEBIT CARD PURCHASE SAFEWAY"
        "01/16/2024","1200.00","*","","PAYROLL ACME"
        """
    )

    result = _detect(text)

    assert result.descriptor.key == "WELLS_FARGO_US"
    assert result.descriptor.has_header is False


def test_unknown_header_yields_generic_descriptor():
    text = _dedent(
        """
        Posted,Memo Line,Value
        2024-03-01,Corner Bakery,-12.50
        2024-03-02,Salary,2000.00
        """
    )

    result = _detect(text)

    assert result.recognized is False
    d = result.descriptor
    assert d.key == GENERIC_KEY
    assert d.has_header is True
    assert d.date_format == "YYYY-MM-DD"
    assert d.amount_convention is AmountConvention.SINGLE_SIGNED
    assert dict(d.fields) == {"date": 0, "description": 1, "amount": 2}


def test_generic_descriptor_from_keywords():
    text = _dedent(
        """
        Buchungsdatum;Beschreibung;Belastung;Gutschrift
        02.01.2024;Migros;12,50;
        03.01.2024;Lohn;;4500,00
        """
    )

    result = _detect(text)

    d = result.descriptor
    assert result.recognized is False
    assert d.delimiter == ";"
    assert d.date_format == "DD.MM.YYYY"
    assert d.amount_convention is AmountConvention.DEBIT_CREDIT_COLUMNS
    assert d.decimal_separator == ","
    assert dict(d.fields) == {"date": 0, "description": 1, "debit": 2, "credit": 3}


def test_resolve_column_exact_then_substring():
    header = ["Transaction Date", "Date", "Amount (EUR)"]

    assert resolve_column(header, "date") == 1
    assert resolve_column(header, "Amount") == 2
    assert resolve_column(header, "Balance") is None
    assert resolve_column(header, 4) == 4


def test_public_sniff_and_detect_helpers():
    from bank_import import detect_format, sniff_content

    data = b"Date;Amount;Text\n01.02.2024;-1,00;x\n02.02.2024;-2,50;y\n"

    sniff = sniff_content(data)
    assert (sniff.delimiter, sniff.field_count, sniff.has_header) == (";", 3, True)

    sniff2, detection = detect_format(data, filename_hint="export.csv")
    assert sniff2 == sniff
    assert detection.ranking
    assert 0.0 <= detection.confidence <= 1.0

# ruff: noqa: E501
import json
from datetime import date

import pytest

from bank_import.catalog import (
    AmountConvention,
    default_catalog,
    load_catalog,
    parse_date,
    validate_descriptor,
)


def _entry(**overrides):
    entry = {
        "key": "TEST_BANK",
        "institution": "Test Bank",
        "country": "ZZ",
        "currency": "usd",
        "date_format": "YYYY-MM-DD",
        "fields": {"date": "Date", "amount": "Amount", "description": "Description"},
        "identifiers": ["Test Bank"],
    }
    entry.update(overrides)
    return entry


def test_default_catalog_is_valid_and_ordered():
    catalog = default_catalog()

    assert len(catalog) == 25
    assert catalog.keys[0] == "ANZ_NZ"
    assert catalog.position("ANZ_NZ") < catalog.position("ING_NL")
    for descriptor in catalog:
        assert validate_descriptor(descriptor) == [], descriptor.key


def test_catalog_lookup_helpers():
    catalog = default_catalog()

    assert "CHASE_US" in catalog
    assert catalog["CHASE_US"].institution == "JPMorgan Chase"
    assert catalog.get("NOPE") is None
    assert [d.key for d in catalog.by_country("nz")] == [
        "ANZ_NZ",
        "ASB_NZ",
        "BNZ_NZ",
        "KIWIBANK_NZ",
    ]


def test_catalog_conventions_loaded_from_json():
    catalog = default_catalog()

    citi = catalog["CITI_US"]
    assert citi.amount_convention is AmountConvention.DEBIT_CREDIT_COLUMNS

    ing = catalog["ING_NL"]
    assert ing.amount_convention is AmountConvention.TYPE_FLAG
    assert ing.delimiter == ";"
    assert ing.decimal_separator == ","
    assert ing.debit_markers == ("AF",)
    assert ing.credit_markers == ("BIJ",)

    wells = catalog["WELLS_FARGO_US"]
    assert wells.has_header is False
    assert wells.column_indices == (0, 1, 4)


def test_merchant_rules_are_ordered_and_case_insensitive():
    chase = default_catalog()["CHASE_US"]

    first = next(r for r in chase.merchant_rules if r.extract("online purchase Amazon"))
    assert first.subtype == "online"
    assert first.extract("online purchase Amazon") == "Amazon"


def test_load_catalog_normalizes_codes():
    catalog = load_catalog(json.dumps([_entry()]))

    d = catalog["TEST_BANK"]
    assert d.currency == "USD"
    assert d.fields == (("date", "Date"), ("amount", "Amount"), ("description", "Description"))


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"date_format": "DD-MMM-YYYY"}, "unknown date format"),
        ({"fields": {"date": "Date", "description": "Description"}}, "'amount' is required"),
        ({"fields": {"date": "Date", "amount": "Amount", "description": "Description", "colour": "C"}}, "unknown canonical fields"),
        ({"has_header": False}, "headerless formats"),
    ],
)
def test_load_catalog_rejects_invalid_descriptors(overrides, message):
    with pytest.raises(ValueError, match=message):
        load_catalog(json.dumps([_entry(**overrides)]))


def test_load_catalog_rejects_duplicate_keys_and_bad_patterns():
    with pytest.raises(ValueError, match="duplicate format key"):
        load_catalog(json.dumps([_entry(), _entry()]))

    with pytest.raises(ValueError):
        load_catalog(json.dumps([_entry(merchant_rules=[{"pattern": "(", "subtype": "x"}])]))


def test_parse_date_tokens_and_time_suffixes():
    assert parse_date("15/01/2024", "DD/MM/YYYY") == date(2024, 1, 15)
    assert parse_date("01/15/2024", "MM/DD/YYYY") == date(2024, 1, 15)
    assert parse_date("20240115", "YYYYMMDD") == date(2024, 1, 15)
    assert parse_date("2024-01-15T08:30:00", "YYYY-MM-DD") == date(2024, 1, 15)
    assert parse_date("15.01.2024 08:30", "DD.MM.YYYY") == date(2024, 1, 15)

    with pytest.raises(ValueError):
        parse_date("01/15/2024", "DD/MM/YYYY")
    with pytest.raises(ValueError):
        parse_date("", "DD/MM/YYYY")

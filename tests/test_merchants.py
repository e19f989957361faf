import pytest

from bank_import.catalog import default_catalog
from bank_import.merchants import (
    MerchantDirectory,
    MerchantEntry,
    default_directory,
    display_name,
    load_directory,
    lookup_key,
)
from bank_import.models import RawRow
from bank_import.normalizers import FieldMapper, TransactionNormalizer


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PAYPAL *SPOTIFY", "SPOTIFY"),
        ("EFTPOS COUNTDOWN 4021", "COUNTDOWN"),
        ("uber trip 12/01/24", "UBER TRIP"),
        ("AMAZON.COM", "AMAZON"),
        ("NETFLIX REF #A1B2", "NETFLIX"),
        ("  new   world  ", "NEW WORLD"),
    ],
)
def test_lookup_key_strips_noise(raw, expected):
    assert lookup_key(raw) == expected


def test_display_name():
    assert display_name("WWW.NETFLIX.COM") == "Netflix"
    assert display_name("POS corner  store") == "Corner Store"


def test_exact_match_on_known_variant():
    found = default_directory().match("SBUX")

    assert found is not None
    assert (found.standard_name, found.category, found.method, found.confidence) == (
        "Starbucks",
        "dining",
        "exact",
        1.0,
    )


def test_partial_match_prefers_longest_variant():
    found = default_directory().match("SQ *STARBUCKS COFFEE #12")

    assert found is not None
    assert found.method == "partial"
    assert found.variant == "STARBUCKS COFFEE"
    assert found.confidence == 0.9


def test_partial_match_respects_word_boundaries():
    assert default_directory().match("HUBERT'S DELI") is None


def test_fuzzy_match_catches_misspellings():
    found = default_directory().match("STARBUKS")

    assert found is not None
    assert found.standard_name == "Starbucks"
    assert found.method == "fuzzy"
    assert 0.8 <= found.confidence < 1.0


def test_fuzzy_threshold_is_honoured():
    assert default_directory().match("STARBUKS", threshold=0.999) is None


def test_country_scoped_entries():
    directory = default_directory()

    assert directory.match("COUNTDOWN", "NZ").standard_name == "Countdown NZ"
    assert directory.match("COUNTDOWN", "nz").standard_name == "Countdown NZ"
    assert directory.match("COUNTDOWN", "US") is None
    assert directory.match("TESCO", "NZ") is None
    assert directory.match("TESCO", "UK").standard_name == "Tesco"
    # Unknown country sees everything.
    assert directory.match("COUNTDOWN").standard_name == "Countdown NZ"
    assert directory.match("COUNTDOWN", "ZZ").standard_name == "Countdown NZ"
    # Global entries are visible from any country.
    assert directory.match("NETFLIX", "DE").standard_name == "Netflix"


def test_blank_names_do_not_match():
    assert default_directory().match("") is None
    assert default_directory().match("   ") is None


def test_custom_merchants_extend_a_copy():
    base = default_directory()
    custom = base.with_custom("JOES CAFE PONSONBY", "Joe's Cafe", "dining", "coffee")

    found = custom.match("EFTPOS JOES CAFE PONSONBY 4410")
    assert found is not None
    assert (found.standard_name, found.method, found.entry.custom) == ("Joe's Cafe", "exact", True)
    assert "JOES CAFE PONSONBY" in custom
    assert "JOES CAFE PONSONBY" not in base


def test_custom_merchants_win_over_packaged_ones():
    custom = default_directory().with_custom("STARBUCKS", "Office Coffee", "office")

    assert custom.match("STARBUCKS").standard_name == "Office Coffee"
    assert custom.match("SBUX").standard_name == "Starbucks"


def test_custom_merchant_name_cannot_be_blank():
    with pytest.raises(ValueError):
        default_directory().with_custom("   ", "Nothing")


def test_suggestions_are_distinct_and_ranked():
    suggestions = default_directory().suggestions("STARBUKS", limit=3)

    assert suggestions[0].standard_name == "Starbucks"
    assert len(suggestions) <= 3
    names = [s.standard_name for s in suggestions]
    assert len(names) == len(set(names))
    scores = [s.confidence for s in suggestions]
    assert scores == sorted(scores, reverse=True)


def test_directory_from_groups_indexes_standard_names():
    entry = MerchantEntry("Corner Dairy", "shopping", "groceries", country="NZ")
    directory = MerchantDirectory.from_groups([(entry, ["CNR DAIRY"])])

    assert len(directory) == 2
    assert directory.entries() == [entry]
    assert directory.match("CORNER DAIRY").entry is entry
    assert directory.match("CNR DAIRY", "NZ").entry is entry


def test_load_directory_rejects_malformed_entries():
    with pytest.raises(ValueError, match="JSON array"):
        load_directory('{"name": "Tesco"}')
    with pytest.raises(ValueError):
        load_directory('[{"name": "Tesco"}]')


def test_packaged_directory_loads():
    directory = default_directory()

    names = {e.standard_name for e in directory.entries()}
    assert {"Starbucks", "Countdown NZ", "Tesco", "Loblaws"} <= names
    assert all(e.country in (None, "NZ", "AU", "UK", "US", "CA") for e in directory.entries())


def test_normalizer_keeps_rule_merchant_and_adds_standard_name():
    descriptor = default_catalog()["ANZ_NZ"]
    header = ("Date", "Amount", "Description", "Reference", "Balance")
    normalizer = TransactionNormalizer(
        descriptor, FieldMapper(descriptor, header), merchants=default_directory()
    )

    tx = normalizer.normalize(
        RawRow(("15/01/2024", "-82.10", "EFTPOS COUNTDOWN PONSONBY 4021", "", "917.90"), 2)
    )

    assert tx.merchant == "COUNTDOWN PONSONBY 4021"
    assert tx.subtype == "card-present"
    assert (tx.standard_merchant, tx.category) == ("Countdown NZ", "shopping")


def test_normalizer_without_directory_leaves_fields_empty():
    descriptor = default_catalog()["ANZ_NZ"]
    header = ("Date", "Amount", "Description", "Reference", "Balance")
    normalizer = TransactionNormalizer(descriptor, FieldMapper(descriptor, header))

    tx = normalizer.normalize(
        RawRow(("15/01/2024", "-82.10", "EFTPOS COUNTDOWN PONSONBY 4021", "", "917.90"), 2)
    )

    assert (tx.standard_merchant, tx.category) == (None, None)

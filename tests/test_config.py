import io
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from bank_import import logging_setup
from bank_import.config import ImportSettings, SimilarityWeights


def test_defaults():
    s = ImportSettings()

    assert s.error_ceiling == 0.10
    assert s.fuzzy_threshold == 0.85
    assert s.date_tolerance_days == 3
    assert s.weights == SimilarityWeights(amount=0.4, date=0.3, description=0.2, merchant=0.1)
    assert s.match_merchants is True
    assert s.merchant_match_threshold == 0.8


def test_from_env_reads_prefixed_scalars():
    env = {
        "BANK_IMPORT_ERROR_CEILING": "0.2",
        "BANK_IMPORT_CHUNK_SIZE": " 50 ",
        "BANK_IMPORT_DEFAULT_CURRENCY": "nzd",
        "BANK_IMPORT_FUZZY_THRESHOLD": "",
        "BANK_IMPORT_MATCH_MERCHANTS": "false",
        "UNRELATED": "x",
    }

    s = ImportSettings.from_env(env)

    assert s.error_ceiling == 0.2
    assert s.chunk_size == 50
    assert s.default_currency == "NZD"
    assert s.fuzzy_threshold == 0.85
    assert s.match_merchants is False


def test_overrides_win_over_environment():
    s = ImportSettings.from_env({"BANK_IMPORT_ERROR_CEILING": "0.2"}, error_ceiling=0.05)

    assert s.error_ceiling == 0.05


def test_from_env_defaults_to_process_environment(monkeypatch):
    monkeypatch.setenv("BANK_IMPORT_DATE_TOLERANCE_DAYS", "5")

    assert ImportSettings.from_env().date_tolerance_days == 5


@pytest.mark.parametrize(
    "kwargs",
    [
        {"error_ceiling": 1.5},
        {"chunk_size": 0},
        {"default_currency": "EURO"},
        {"default_currency": "E1R"},
        {"unknown_setting": 1},
    ],
)
def test_invalid_settings_are_rejected(kwargs):
    with pytest.raises(PydanticValidationError):
        ImportSettings(**kwargs)


def test_weights_must_sum_to_one():
    with pytest.raises(PydanticValidationError, match="sum to 1.0"):
        SimilarityWeights(amount=0.5, date=0.3, description=0.2, merchant=0.1)


def test_settings_are_frozen():
    s = ImportSettings()
    with pytest.raises(PydanticValidationError):
        s.error_ceiling = 0.5


def test_configure_logging_replaces_its_own_handler():
    pkg = logging.getLogger("bank_import")
    first, second = io.StringIO(), io.StringIO()

    logging_setup.configure_logging("debug", stream=first, with_time=False)
    logging_setup.configure_logging("warning", stream=second, with_time=False)
    log = logging_setup.get_logger("bank_import.pipeline")
    log.info("import:start filename=%s", "a.csv")
    log.warning("import:failed stage=%s", "parsing")

    assert [h.get_name() for h in pkg.handlers].count("bank_import.console") == 1
    assert pkg.propagate is False
    assert first.getvalue() == ""
    assert second.getvalue() == "WARNING pipeline  import:failed stage=parsing\n"


def test_event_formatter_keeps_foreign_logger_names():
    record = logging.LogRecord("sqlalchemy.engine", logging.INFO, __file__, 1, "select %s", (1,), None)

    line = logging_setup.EventFormatter(with_time=False).format(record)

    assert line == "INFO  sqlalchemy.engine select 1"


def test_get_logger_prefixes_short_names():
    assert logging_setup.get_logger("sniffer").name == "bank_import.sniffer"
    assert logging_setup.get_logger("bank_import.store").name == "bank_import.store"


def test_log_level_resolution_order(monkeypatch):
    monkeypatch.setenv("BANK_IMPORT_LOG_LEVEL", "warning")

    assert logging_setup.resolve_level() == logging.WARNING
    assert logging_setup.resolve_level(settings=ImportSettings(log_level="error")) == logging.ERROR
    assert logging_setup.resolve_level("debug", ImportSettings(log_level="error")) == logging.DEBUG
    assert logging_setup.resolve_level(15) == 15

    monkeypatch.delenv("BANK_IMPORT_LOG_LEVEL")
    assert logging_setup.resolve_level() == logging.INFO


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValueError, match="log_level"):
        logging_setup.resolve_level("loud")

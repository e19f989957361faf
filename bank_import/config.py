"""Import settings.

Every tunable of the pipeline lives on :class:`ImportSettings`. The defaults
are the historical hardcoded values (10 % error ceiling, 0.85 fuzzy
acceptance, 1 % amount tolerance, 3-day date tolerance, 0.3 detection
threshold); callers override them per call or through ``BANK_IMPORT_*``
environment variables via :meth:`ImportSettings.from_env`.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_PREFIX = "BANK_IMPORT_"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SimilarityWeights(BaseModel):
    """Weights of the four fuzzy-duplicate signals; they must sum to 1."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    amount: float = Field(default=0.4, ge=0.0, le=1.0)
    date: float = Field(default=0.3, ge=0.0, le=1.0)
    description: float = Field(default=0.2, ge=0.0, le=1.0)
    merchant: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _sum_to_one(self) -> SimilarityWeights:
        total = self.amount + self.date + self.description + self.merchant
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"similarity weights must sum to 1.0 (got {total:.4f})")
        return self


class ImportSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    # Input limits
    max_file_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    # Parsing
    error_ceiling: float = Field(default=0.10, ge=0.0, le=1.0)
    chunk_size: int = Field(default=500, gt=0)
    sniff_sample_lines: int = Field(default=10, ge=2)
    max_preamble_lines: int = Field(default=3, ge=0)

    # Detection
    detection_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    default_currency: str = "USD"

    # Duplicate detection
    fuzzy_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    amount_tolerance_pct: float = Field(default=0.01, ge=0.0)
    date_tolerance_days: int = Field(default=3, ge=0)
    fuzzy_merchant_tokens: int = Field(default=3, gt=0)
    weights: SimilarityWeights = Field(default_factory=SimilarityWeights)

    # Merchant standardization
    match_merchants: bool = True
    merchant_match_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    # Logging
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _level_name(cls, v: str) -> str:
        name = v.upper()
        if name not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return name

    @field_validator("default_currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        code = v.upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO 4217 code")
        return code

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> ImportSettings:
        """Build settings from ``BANK_IMPORT_<FIELD>`` variables plus overrides.

        Only scalar fields are read from the environment (e.g.
        ``BANK_IMPORT_ERROR_CEILING=0.2``); explicit ``overrides`` win.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            if name == "weights":
                continue
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        values.update(overrides)
        # Environment values are strings; lax validation coerces them.
        return cls.model_validate(values)


__all__ = ["ImportSettings", "SimilarityWeights"]

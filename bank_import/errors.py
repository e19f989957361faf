"""Error taxonomy for the import pipeline.

Fatal conditions (the call ends in the ``Failed`` state) are raised:

- ``InputError``: unreadable, empty, binary or oversized input.
- ``ParseError``: the malformed-row rate exceeded the configured ceiling.
- ``ValidationError``: parse + validation rejections together exceeded the
  same ceiling.
- ``CancelledError``: the caller's cancellation token fired.
- ``InvariantViolation``: an internal consistency check failed.

``EncodingAmbiguous`` and ``FormatDetectionLowConfidence`` are never raised by
the pipeline; instances are recorded as warnings on the import summary. Row
level parse/validation problems are recorded as :class:`~bank_import.models.RowError`
values instead of exceptions.
"""

from __future__ import annotations


class BankImportError(Exception):
    """Base class for every error raised by ``bank_import``."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        # Set by the pipeline to the stage that was active when the error occurred.
        self.stage = stage


class InputError(BankImportError):
    pass


class ParseError(BankImportError):
    """Row-level parse failures exceeded the error ceiling (or a single row failed)."""

    def __init__(
        self,
        message: str,
        *,
        line_number: int | None = None,
        error_rate: float | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.line_number = line_number
        self.error_rate = error_rate


class ValidationError(BankImportError):
    """A mapped row could not be normalized, or rejections exceeded the ceiling."""

    def __init__(
        self,
        message: str,
        *,
        line_number: int | None = None,
        error_rate: float | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.line_number = line_number
        self.error_rate = error_rate


class CancelledError(BankImportError):
    pass


class InvariantViolation(BankImportError):
    pass


class EncodingAmbiguous(BankImportError):
    pass


class FormatDetectionLowConfidence(BankImportError):
    pass


__all__ = [
    "BankImportError",
    "InputError",
    "ParseError",
    "ValidationError",
    "CancelledError",
    "InvariantViolation",
    "EncodingAmbiguous",
    "FormatDetectionLowConfidence",
]

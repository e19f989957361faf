"""Public interface for the ``bank_import`` package.

Symbol re-exports only: the API functions, the pipeline types callers wire
progress and cancellation through, the result models and the error taxonomy.
"""

from .api import detect_format, import_path, import_transactions, sniff_content
from .catalog import BankFormatDescriptor, FormatCatalog, default_catalog, load_catalog
from .config import ImportSettings, SimilarityWeights
from .errors import (
    BankImportError,
    CancelledError,
    EncodingAmbiguous,
    FormatDetectionLowConfidence,
    InputError,
    InvariantViolation,
    ParseError,
    ValidationError,
)
from .merchants import MerchantDirectory, MerchantMatch, default_directory, load_directory
from .models import (
    CanonicalTransaction,
    DuplicateStatus,
    Fingerprint,
    ImportReport,
    ImportResult,
    ImportSummary,
    ProbableDuplicate,
    RowError,
    StoredTransaction,
)
from .pipeline import CancellationToken, ImportPipeline, ImportStage
from .store import FingerprintSource, InMemoryFingerprintSource

__all__ = [
    # API
    "import_transactions",
    "import_path",
    "sniff_content",
    "detect_format",
    # Pipeline
    "ImportPipeline",
    "ImportStage",
    "CancellationToken",
    "ImportSettings",
    "SimilarityWeights",
    # Catalog
    "BankFormatDescriptor",
    "FormatCatalog",
    "default_catalog",
    "load_catalog",
    # Merchants
    "MerchantDirectory",
    "MerchantMatch",
    "default_directory",
    "load_directory",
    # Models
    "CanonicalTransaction",
    "DuplicateStatus",
    "Fingerprint",
    "ImportReport",
    "ImportResult",
    "ImportSummary",
    "ProbableDuplicate",
    "RowError",
    "StoredTransaction",
    "FingerprintSource",
    "InMemoryFingerprintSource",
    # Errors
    "BankImportError",
    "InputError",
    "ParseError",
    "ValidationError",
    "CancelledError",
    "InvariantViolation",
    "EncodingAmbiguous",
    "FormatDetectionLowConfidence",
]

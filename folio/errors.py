"""
Error types and error logging for folio.

Exception hierarchy:

    FolioError
    ├── ValidationError          (also a ValueError)
    │   ├── ConceptIdError
    │   └── EmbeddingValidationError  (also an EmbeddingError)
    ├── EmbeddingError
    ├── TransientNetworkError
    ├── GenerationError
    └── BatchRunError
        └── CheckpointError

Validation errors are deterministic and never retried. Transient network
errors are retried by the embedding client and degrade the duplicate judge
to "unknown". Batch run errors abort the whole run.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class FolioError(Exception):
    """Base class for all folio errors."""


class ValidationError(FolioError, ValueError):
    """Input failed a structural check (wrong shape, malformed id)."""


class ConceptIdError(ValidationError):
    """Proposed concept identifier is malformed."""


class EmbeddingError(FolioError):
    """Embedding could not be produced: service unreachable, bad response, or model missing."""


class EmbeddingValidationError(EmbeddingError, ValidationError):
    """Embedding vector has the wrong dimension or non-finite values."""


class TransientNetworkError(FolioError):
    """Remote call failed in a way that may succeed on retry (timeout, 5xx, refused)."""


class GenerationError(FolioError):
    """LLM generation call failed or returned an unusable response."""


class BatchRunError(FolioError):
    """
    A batch run was aborted.

    Attributes:
        items_processed: Items in batches that completed before the failure
        batch_index: 1-based index of the batch that failed
    """

    def __init__(self, message: str, *, items_processed: int = 0, batch_index: int = 0):
        super().__init__(message)
        self.items_processed = items_processed
        self.batch_index = batch_index


class CheckpointError(BatchRunError):
    """Post-batch checkpoint hook failed; no further batches run."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting FOLIO_STORE_PATH."""
    store = os.environ.get("FOLIO_STORE_PATH")
    if store:
        return Path(store) / "folio-errors.log"
    return Path.home() / ".folio" / "folio-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path

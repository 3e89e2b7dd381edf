"""Leaf services used by the orchestrator.

Each service is constructed explicitly and injected; none of them is a
process-wide singleton.
"""

from .cache import ResultCache, cache_key
from .credentials import CredentialRegistry, is_placeholder
from .fallback import empty_value, fallback_value, validate_payload
from .ledger import UsageLedger, UsageTotals
from .memory import (
    InteractionMemory,
    InteractionStore,
    InMemoryInteractionStore,
    SQLiteInteractionStore,
)
from .pricing import MODEL_PRICES, estimate_cost
from .retry import RetryOutcome, RetryPolicy, with_retry

__all__ = [
    "ResultCache",
    "cache_key",
    "CredentialRegistry",
    "is_placeholder",
    "empty_value",
    "fallback_value",
    "validate_payload",
    "UsageLedger",
    "UsageTotals",
    "InteractionMemory",
    "InteractionStore",
    "InMemoryInteractionStore",
    "SQLiteInteractionStore",
    "MODEL_PRICES",
    "estimate_cost",
    "RetryOutcome",
    "RetryPolicy",
    "with_retry",
]

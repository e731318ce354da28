from __future__ import annotations

from functools import lru_cache

from answer_sync.config import settings
from answer_sync.services.reconciler import ReconciliationEngine
from answer_sync.stores.supabase_store import create_store


@lru_cache(maxsize=1)
def get_engine() -> ReconciliationEngine:
    """Process-wide engine, built on first request."""
    return ReconciliationEngine.from_settings(settings, create_store(settings))

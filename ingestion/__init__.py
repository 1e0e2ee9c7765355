"""Remote fetching, cache management and periodic refresh for one context."""

from ingestion.cache_manager import CacheManager, CacheState
from ingestion.config import IngestionSettings
from ingestion.fetcher import RemoteFetcher, parse_payload
from ingestion.scheduler import RefreshScheduler

__all__ = [
    "CacheManager",
    "CacheState",
    "IngestionSettings",
    "RefreshScheduler",
    "RemoteFetcher",
    "parse_payload",
]

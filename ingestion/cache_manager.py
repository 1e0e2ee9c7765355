"""
Per-context owner of the in-memory dataset.

The cache manager decides whether the persisted dataset is fresh enough to
serve, refreshes it from the remote source when it is not, and answers
membership queries against the reconstruction it holds.

State machine:
    EMPTY -> REFRESHING -> FRESH -> STALE -> REFRESHING -> FRESH
A failed refresh moves to STALE and keeps whatever dataset was held before.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from common.constants import (
    DATA_RETENTION_HOURS,
    DEFAULT_ID_FIELD,
    IN_PROGRESS_POLL_SECONDS,
    IN_PROGRESS_TIMEOUT_SECONDS,
)
from common.types import FetchResult, MetaRecord
from ingestion.fetcher import ProgressCallback, RemoteFetcher
from store.chunk_store import ChunkedStore

logger = logging.getLogger(__name__)


class CacheState(str, Enum):
    EMPTY = "empty"
    REFRESHING = "refreshing"
    FRESH = "fresh"
    STALE = "stale"


class CacheManager:
    """
    Holds one context's dataset and keeps it fresh.

    One instance per execution context; it is handed to the sync node, the
    scheduler and any consumer that needs membership answers.
    """

    def __init__(
        self,
        store: ChunkedStore,
        fetcher: RemoteFetcher,
        source_url: str,
        retention_seconds: float = DATA_RETENTION_HOURS * 3600,
        use_change_token: bool = False,
        ranged: bool = False,
        id_field: str = DEFAULT_ID_FIELD,
        in_progress_poll: float = IN_PROGRESS_POLL_SECONDS,
        in_progress_timeout: float = IN_PROGRESS_TIMEOUT_SECONDS,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.fetcher = fetcher
        self.source_url = source_url
        self.retention_seconds = retention_seconds
        self.use_change_token = use_change_token
        self.ranged = ranged
        self.id_field = id_field
        self.in_progress_poll = in_progress_poll
        self.in_progress_timeout = in_progress_timeout
        self.on_progress = on_progress
        self.clock = clock

        self.state = CacheState.EMPTY
        self.source: Optional[str] = None
        self._records: Optional[List[Any]] = None
        self._keys: Set[str] = set()
        self._loaded_stamp: Optional[float] = None
        self._owns_marker = False
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def loaded(self) -> bool:
        return self._records is not None

    @property
    def record_count(self) -> int:
        return len(self._records) if self._records is not None else 0

    @property
    def dataset(self) -> List[Any]:
        """Copy of the in-memory dataset (empty if nothing is loaded)."""
        return list(self._records) if self._records is not None else []

    def record_key(self, value: Any) -> str:
        """
        Membership key of a record or candidate.

        Scalars are compared by their string form, so 200 and "200" match.
        Objects are compared by their id field, or by their canonical JSON
        if they have none.
        """
        if isinstance(value, dict):
            if self.id_field in value:
                return str(value[self.id_field])
            return json.dumps(value, sort_keys=True)
        return str(value)

    def _install(self, records: List[Any], source: str, stamp: Optional[float]) -> None:
        self._records = list(records)
        self._keys = {self.record_key(record) for record in self._records}
        self._loaded_stamp = stamp
        self.source = source

    def adopt(self, records: List[Any]) -> None:
        """
        Install a dataset received from a peer without persisting it; the
        peer already wrote it to the shared store.
        """
        self._install(records, "peer", None)
        self.state = CacheState.FRESH
        logger.info(f"Adopted {len(records)} records from a peer")

    def _is_within_retention(self, meta: MetaRecord) -> bool:
        if meta.last_updated is None:
            return False
        return self.clock() - meta.last_updated < self.retention_seconds

    async def _wait_for_other_writer(self) -> Optional[MetaRecord]:
        """
        Return the current meta, first waiting while another context holds
        the in-progress marker. A marker this context left behind after a
        failed refresh is returned immediately.
        """
        meta = await self.store.read_meta()
        if meta is None or not meta.in_progress or self._owns_marker:
            return meta

        logger.info(f"Store {self.store.store_name} is being written by another context, waiting")
        deadline = time.monotonic() + self.in_progress_timeout
        while True:
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Store {self.store.store_name} still in progress after "
                    f"{self.in_progress_timeout}s, proceeding"
                )
                return meta
            await asyncio.sleep(self.in_progress_poll)
            meta = await self.store.read_meta()
            # a writer clears the store before writing its own marker
            if meta is not None and not meta.in_progress:
                return meta

    async def _load_from_store(self, meta: MetaRecord) -> None:
        result = await self.store.read_dataset()
        if result.missing_chunks:
            logger.warning(
                f"Loaded {len(result.records)} records with unreadable chunks "
                f"{result.missing_chunks}"
            )
        self._install(result.records, "store", meta.last_updated)

    async def ensure_fresh(self) -> None:
        """
        Make sure a current dataset is held in memory.

        Without a change-token policy a stored dataset younger than the
        retention window is served as is. With the policy, the source is
        revalidated and only re-downloaded and re-persisted when its token
        differs from the stored one.

        Raises:
            IngestionError: If a required refresh fails
        """
        meta = await self._wait_for_other_writer()

        if meta is None or meta.in_progress:
            await self.refresh()
            return

        if self.use_change_token:
            await self.refresh(previous_token=meta.change_token)
            return

        if not self._is_within_retention(meta):
            if self.state == CacheState.FRESH:
                self.state = CacheState.STALE
            logger.info(f"Stored dataset older than {self.retention_seconds}s, refreshing")
            await self.refresh()
            return

        if self._records is None or (
            self._loaded_stamp is not None and self._loaded_stamp != meta.last_updated
        ):
            await self._load_from_store(meta)
        elif self._loaded_stamp is None:
            self._loaded_stamp = meta.last_updated

        self.state = CacheState.FRESH

    async def refresh(self, previous_token: Optional[str] = None) -> None:
        """
        Fetch the dataset and persist it.

        A call made while a refresh is already running in this context waits
        for that refresh instead of starting a second one.

        Raises:
            IngestionError: If fetching or storing fails
        """
        if self._refresh_task is not None and not self._refresh_task.done():
            logger.debug("Refresh already in flight, joining it")
            await self._refresh_task
            return

        self._refresh_task = asyncio.ensure_future(self._run_refresh(previous_token))
        try:
            await self._refresh_task
        finally:
            self._refresh_task = None

    async def _fetch(self, previous_token: Optional[str]) -> FetchResult:
        if self.use_change_token or self.ranged:
            return await self.fetcher.fetch_if_changed(
                self.source_url,
                previous_token if self.use_change_token else None,
                on_progress=self.on_progress,
                ranged=self.ranged,
            )
        records = await self.fetcher.fetch_all(self.source_url)
        return FetchResult(downloaded=True, records=records, token=None)

    async def _run_refresh(self, previous_token: Optional[str]) -> None:
        self.state = CacheState.REFRESHING
        start_time = time.monotonic()

        try:
            self._owns_marker = True
            await self.store.mark_in_progress()

            result = await self._fetch(previous_token)

            if result.downloaded:
                records = result.records or []
                meta = await self.store.write_dataset(records, change_token=result.token)
                self._install(records, "remote", meta.last_updated)
            else:
                meta = await self.store.mark_unchanged(result.token)
                if self._records is None or self._loaded_stamp is None:
                    await self._load_from_store(meta)
                else:
                    self._loaded_stamp = meta.last_updated

            self._owns_marker = False
        except Exception as e:
            self.state = CacheState.STALE
            logger.error(f"Refresh of {self.source_url} failed: {e}")
            raise

        self.state = CacheState.FRESH
        logger.info(
            f"Refresh complete: {self.record_count} records "
            f"[downloaded={result.downloaded}, elapsed={time.monotonic() - start_time:.2f}s]"
        )

    async def query(self, candidates: List[Any]) -> List[Any]:
        """
        Return the candidates that are in the dataset.

        Order and duplicates of the candidates are preserved. Never raises:
        if no dataset can be obtained the best available answer, possibly
        empty, is returned.
        """
        try:
            if self._records is None:
                await self.ensure_fresh()
        except Exception as e:
            logger.warning(f"Membership query served without a fresh dataset: {e}")

        try:
            return [c for c in candidates if self.record_key(c) in self._keys]
        except Exception as e:
            logger.error(f"Membership query failed: {e}", exc_info=True)
            return []

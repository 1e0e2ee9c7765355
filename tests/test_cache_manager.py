"""Tests for the per-context cache manager."""

import asyncio
import time

import pytest

from common.exceptions import NetworkError
from common.types import MetaRecord
from ingestion.cache_manager import CacheManager, CacheState

URL = "http://source.test/api/numbers"
RETENTION = 24 * 3600


def make_cache(store, fetcher, **kwargs):
    kwargs.setdefault("retention_seconds", RETENTION)
    kwargs.setdefault("in_progress_poll", 0.01)
    kwargs.setdefault("in_progress_timeout", 0.5)
    return CacheManager(store, fetcher, URL, **kwargs)


class TestEnsureFresh:

    @pytest.mark.asyncio
    async def test_empty_store_triggers_fetch(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["100", "200", "300"])
        cache = make_cache(make_store(), fetcher)

        assert cache.state == CacheState.EMPTY
        await cache.ensure_fresh()

        assert fetcher.calls == 1
        assert cache.state == CacheState.FRESH
        assert cache.dataset == ["100", "200", "300"]
        assert cache.source == "remote"

    @pytest.mark.asyncio
    async def test_idempotent_within_retention(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["1"])
        cache = make_cache(make_store(), fetcher)

        await cache.ensure_fresh()
        await cache.ensure_fresh()

        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_fresh_store_loads_without_fetch(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_dataset(["7", "8"])
        fetcher = fake_fetcher_cls(["other"])
        cache = make_cache(store, fetcher)

        await cache.ensure_fresh()

        assert fetcher.calls == 0
        assert cache.dataset == ["7", "8"]
        assert cache.source == "store"

    @pytest.mark.asyncio
    async def test_stale_store_triggers_one_fetch(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_dataset(["old"])
        fetcher = fake_fetcher_cls(["new"])
        now = time.time() + RETENTION + 3600
        cache = make_cache(store, fetcher, clock=lambda: now)

        await cache.ensure_fresh()

        assert fetcher.calls == 1
        assert cache.dataset == ["new"]

    @pytest.mark.asyncio
    async def test_reloads_when_another_context_rewrote_store(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_dataset(["v1"])
        cache = make_cache(store, fake_fetcher_cls())
        await cache.ensure_fresh()

        await asyncio.sleep(0.01)
        await store.write_dataset(["v2"])
        await cache.ensure_fresh()

        assert cache.dataset == ["v2"]

    @pytest.mark.asyncio
    async def test_change_token_policy_revalidates(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["a"], token="t1")
        store = make_store()
        cache = make_cache(store, fetcher, use_change_token=True)

        await cache.ensure_fresh()
        first_meta = await store.read_meta()
        await cache.ensure_fresh()

        assert fetcher.fetch_if_changed_calls == 2
        assert fetcher.previous_tokens == [None, "t1"]
        assert first_meta.change_token == "t1"
        assert cache.dataset == ["a"]

    @pytest.mark.asyncio
    async def test_change_token_unchanged_does_not_rewrite_chunks(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_dataset(["kept"], change_token="t1")
        fetcher = fake_fetcher_cls(["ignored"], token="t1")
        cache = make_cache(store, fetcher, use_change_token=True)

        await cache.ensure_fresh()

        assert cache.dataset == ["kept"]
        meta = await store.read_meta()
        assert meta.in_progress is False

    @pytest.mark.asyncio
    async def test_change_token_differs_rewrites(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_dataset(["old"], change_token="t1")
        fetcher = fake_fetcher_cls(["new"], token="t2")
        cache = make_cache(store, fetcher, use_change_token=True)

        await cache.ensure_fresh()

        assert cache.dataset == ["new"]
        assert (await store.read_meta()).change_token == "t2"

    @pytest.mark.asyncio
    async def test_waits_for_other_writer(self, make_store, fake_fetcher_cls):
        store = make_store()
        writer_store = make_store()
        await store.write_meta(MetaRecord(chunk_count=0, in_progress=True))
        fetcher = fake_fetcher_cls(["should-not-fetch"])
        cache = make_cache(store, fetcher)

        async def other_context_finishes():
            await asyncio.sleep(0.05)
            await writer_store.write_dataset(["from-other"])

        await asyncio.gather(cache.ensure_fresh(), other_context_finishes())

        assert fetcher.calls == 0
        assert cache.dataset == ["from-other"]

    @pytest.mark.asyncio
    async def test_abandoned_marker_times_out_and_refreshes(self, make_store, fake_fetcher_cls):
        store = make_store()
        await store.write_meta(MetaRecord(chunk_count=0, in_progress=True))
        fetcher = fake_fetcher_cls(["fresh"])
        cache = make_cache(store, fetcher, in_progress_timeout=0.05)

        await cache.ensure_fresh()

        assert fetcher.calls == 1
        assert cache.dataset == ["fresh"]


class TestRefresh:

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_dataset(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["1", "2"])
        store = make_store()
        cache = make_cache(store, fetcher)
        await cache.refresh()

        fetcher.error = NetworkError("source down", status=503)
        with pytest.raises(NetworkError):
            await cache.refresh()

        assert cache.state == CacheState.STALE
        assert cache.dataset == ["1", "2"]
        assert (await store.read_meta()).in_progress is True

    @pytest.mark.asyncio
    async def test_own_failed_marker_is_not_waited_on(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["x"], error=NetworkError("down"))
        cache = make_cache(make_store(), fetcher, in_progress_timeout=5.0)

        with pytest.raises(NetworkError):
            await cache.ensure_fresh()

        fetcher.error = None
        started = time.monotonic()
        await cache.ensure_fresh()

        assert time.monotonic() - started < 1.0
        assert cache.dataset == ["x"]

    @pytest.mark.asyncio
    async def test_concurrent_refresh_shares_one_fetch(self, make_store, fake_fetcher_cls):
        class SlowFetcher(fake_fetcher_cls):
            async def fetch_all(self, url):
                await asyncio.sleep(0.05)
                return await super().fetch_all(url)

        fetcher = SlowFetcher(["1"])
        cache = make_cache(make_store(), fetcher)

        await asyncio.gather(cache.refresh(), cache.refresh())

        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_refresh_persists_chunks(self, make_store, fake_fetcher_cls):
        store = make_store(batch_size=2)
        cache = make_cache(store, fake_fetcher_cls(["100", "200", "300"]))

        await cache.refresh()

        meta = await store.read_meta()
        assert meta.chunk_count == 2
        assert meta.in_progress is False


class TestQuery:

    @pytest.mark.asyncio
    async def test_scenario_delimited_ids(self, make_store, fake_fetcher_cls):
        cache = make_cache(make_store(batch_size=2), fake_fetcher_cls(["100", "200", "300"]))
        assert await cache.query(["200", "999"]) == ["200"]

    @pytest.mark.asyncio
    async def test_preserves_order_and_duplicates(self, make_store, fake_fetcher_cls):
        cache = make_cache(make_store(), fake_fetcher_cls(["1", "2", "3"]))
        assert await cache.query(["3", "9", "1", "3"]) == ["3", "1", "3"]

    @pytest.mark.asyncio
    async def test_numbers_and_strings_match(self, make_store, fake_fetcher_cls):
        cache = make_cache(make_store(), fake_fetcher_cls([100, 200]))
        assert await cache.query(["200", 100, "300"]) == ["200", 100]

    @pytest.mark.asyncio
    async def test_object_records_match_on_id_field(self, make_store, fake_fetcher_cls):
        records = [{"loanNumber": "L1", "type": "offshore"}, {"loanNumber": "L2"}]
        cache = make_cache(make_store(), fake_fetcher_cls(records), id_field="loanNumber")
        assert await cache.query(["L2", "L3"]) == ["L2"]

    @pytest.mark.asyncio
    async def test_never_raises_when_source_fails(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(error=NetworkError("down"))
        cache = make_cache(make_store(), fetcher)

        assert await cache.query(["1"]) == []

    @pytest.mark.asyncio
    async def test_does_not_refetch_once_loaded(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["1"])
        cache = make_cache(make_store(), fetcher)

        await cache.query(["1"])
        await cache.query(["1"])

        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_adopted_dataset_answers_without_fetch(self, make_store, fake_fetcher_cls):
        fetcher = fake_fetcher_cls(["unused"])
        cache = make_cache(make_store(), fetcher)

        cache.adopt(["5", "6"])

        assert await cache.query(["6"]) == ["6"]
        assert fetcher.calls == 0
        assert cache.source == "peer"

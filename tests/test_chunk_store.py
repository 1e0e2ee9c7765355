"""Tests for encrypted chunked persistence."""

import pytest

from common.exceptions import PartialDatasetError, StorageError
from common.types import EncryptedBlock, MetaRecord
from store.backends import JsonFileBackend, MemoryBackend
from store.chunk_store import ChunkedStore, split_into_chunks

BATCH = 5


class TestSplitIntoChunks:

    def test_empty_dataset_has_no_chunks(self):
        assert split_into_chunks([], 3) == []

    def test_last_chunk_is_short(self):
        assert split_into_chunks([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_rejects_zero_batch(self):
        with pytest.raises(ValueError):
            split_into_chunks([1], 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [0, 1, BATCH - 1, BATCH, BATCH + 1, 10 * BATCH])
async def test_round_trip_sizes(make_store, size):
    store = make_store(batch_size=BATCH)
    records = [f"id-{i % 7}-ü" for i in range(size)]

    meta = await store.write_dataset(records)
    result = await store.read_dataset()

    assert result.records == records
    assert result.complete
    assert meta.chunk_count == -(-size // BATCH)
    assert meta.in_progress is False
    assert meta.last_updated is not None


@pytest.mark.asyncio
async def test_scenario_delimited_ids_in_two_chunks(make_store, memory_backend, codec):
    store = make_store(batch_size=2)

    await store.write_dataset(["100", "200", "300"])

    meta = await store.read_meta()
    assert meta.chunk_count == 2
    assert meta.in_progress is False

    first = codec.decrypt_records(
        EncryptedBlock.from_dict(await memory_backend.get("LoanNumbers", "chunk-0"))
    )
    second = codec.decrypt_records(
        EncryptedBlock.from_dict(await memory_backend.get("LoanNumbers", "chunk-1"))
    )
    assert first == ["100", "200"]
    assert second == ["300"]


@pytest.mark.asyncio
async def test_missing_meta_reads_empty(make_store):
    result = await make_store().read_dataset()

    assert result.records == []
    assert result.meta is None


@pytest.mark.asyncio
async def test_missing_chunk_is_skipped(make_store, memory_backend):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3", "4", "5"])

    await memory_backend.delete("LoanNumbers", "chunk-1")
    result = await store.read_dataset()

    assert result.records == ["1", "2", "5"]
    assert result.missing_chunks == [1]
    assert not result.complete


@pytest.mark.asyncio
async def test_undecryptable_chunk_is_skipped(make_store, memory_backend):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3"])

    stored = await memory_backend.get("LoanNumbers", "chunk-0")
    stored["encryptedData"] = "AAAAAAAAAAAAAAAAAAAAAAAAAAAA"
    await memory_backend.put("LoanNumbers", "chunk-0", stored)

    result = await store.read_dataset()

    assert result.records == ["3"]
    assert result.missing_chunks == [0]


@pytest.mark.asyncio
async def test_malformed_chunk_is_skipped(make_store, memory_backend):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3"])

    await memory_backend.put("LoanNumbers", "chunk-1", {"unexpected": True})
    result = await store.read_dataset()

    assert result.records == ["1", "2"]
    assert result.missing_chunks == [1]


@pytest.mark.asyncio
async def test_strict_read_raises_on_missing_chunk(make_store, memory_backend):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3"])
    await memory_backend.delete("LoanNumbers", "chunk-0")

    with pytest.raises(PartialDatasetError) as exc_info:
        await store.read_dataset(strict=True)

    assert exc_info.value.missing_chunks == [0]


@pytest.mark.asyncio
async def test_rewrite_replaces_previous_chunks(make_store, memory_backend):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3", "4", "5"])
    await store.write_dataset(["9"])

    result = await store.read_dataset()

    assert result.records == ["9"]
    assert await memory_backend.get("LoanNumbers", "chunk-2") is None


@pytest.mark.asyncio
async def test_change_token_is_stored(make_store):
    store = make_store()
    await store.write_dataset(["1"], change_token='"abc"')

    meta = await store.read_meta()
    assert meta.change_token == '"abc"'


@pytest.mark.asyncio
async def test_chunk_write_failure_leaves_in_progress_meta(codec):
    class FailingBackend(MemoryBackend):
        async def put(self, store, key, value):
            if key == "chunk-1":
                raise StorageError("disk full")
            await super().put(store, key, value)

    backend = FailingBackend()
    store = ChunkedStore(backend, codec, "S", batch_size=1)

    with pytest.raises(StorageError):
        await store.write_dataset(["a", "b", "c"])

    meta = await store.read_meta()
    assert meta.in_progress is True
    assert meta.chunk_count == 3


@pytest.mark.asyncio
async def test_mark_in_progress_keeps_previous_chunks_readable(make_store):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3"], change_token="t1")

    meta = await store.mark_in_progress()

    assert meta == MetaRecord(
        chunk_count=2, in_progress=True, change_token="t1", last_updated=meta.last_updated
    )
    assert (await store.read_dataset()).records == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_mark_unchanged_clears_marker(make_store):
    store = make_store(batch_size=2)
    await store.write_dataset(["1", "2", "3"], change_token="t1")
    await store.mark_in_progress()

    meta = await store.mark_unchanged("t1")

    assert meta.in_progress is False
    assert meta.chunk_count == 2
    assert (await store.read_dataset()).records == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_wipe(make_store):
    store = make_store()
    await store.write_dataset(["1"])

    await store.wipe()

    assert await store.read_meta() is None


@pytest.mark.asyncio
async def test_writing_one_store_keeps_store_with_longer_name(make_store):
    other = make_store(store_name="LoanNumbers-v2")
    await other.write_dataset(["keep-me"])

    await make_store(store_name="LoanNumbers").write_dataset(["1", "2", "3"])

    assert (await other.read_dataset()).records == ["keep-me"]


@pytest.mark.asyncio
async def test_chunks_are_stored_in_one_batch(codec, tmp_path, monkeypatch):
    backend = JsonFileBackend(str(tmp_path / "stores"))
    saves = []
    original_save = backend._save

    def counting_save(store, data):
        saves.append(len(data))
        original_save(store, data)

    monkeypatch.setattr(backend, "_save", counting_save)
    store = ChunkedStore(backend, codec, "S", batch_size=1)

    await store.write_dataset([str(i) for i in range(10)])

    # in-progress meta, all ten chunks, final meta
    assert len(saves) == 3
    assert (await store.read_dataset()).records == [str(i) for i in range(10)]

"""
Encrypted, chunked persistence of a whole dataset.

A dataset of N records is split into ceil(N / batch_size) chunks. Each chunk
is sealed by the codec and stored under ``<store>-chunk-<i>``; the meta
record under ``<store>-meta`` says how many chunks make up the dataset and
whether a write is still in progress.
"""

import binascii
import logging
import time
from typing import Any, List, Optional

from common.constants import CHUNK_BATCH_SIZE, CHUNK_KEY_PREFIX, META_KEY
from common.exceptions import AuthenticationError, PartialDatasetError, StorageError
from common.types import EncryptedBlock, LoadResult, MetaRecord
from store.backends import StorageBackend
from store.codec import EncryptionCodec

logger = logging.getLogger(__name__)


def chunk_key(index: int) -> str:
    return f"{CHUNK_KEY_PREFIX}{index}"


def split_into_chunks(records: List[Any], batch_size: int) -> List[List[Any]]:
    """
    Split records into consecutive slices of at most batch_size.

    An empty dataset produces no chunks.
    """
    if batch_size < 1:
        raise ValueError("Batch size must be at least 1")
    return [records[i:i + batch_size] for i in range(0, len(records), batch_size)]


class ChunkedStore:
    """
    Reads and writes one named dataset through a storage backend.
    """

    def __init__(
        self,
        backend: StorageBackend,
        codec: EncryptionCodec,
        store_name: str,
        batch_size: int = CHUNK_BATCH_SIZE
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1")
        self.backend = backend
        self.codec = codec
        self.store_name = store_name
        self.batch_size = batch_size

    async def read_meta(self) -> Optional[MetaRecord]:
        """Return the meta record, or None if the store was never written."""
        raw = await self.backend.get(self.store_name, META_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return MetaRecord.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed meta record for {self.store_name}: {e}")
            return None

    async def write_meta(self, meta: MetaRecord) -> None:
        await self.backend.put(self.store_name, META_KEY, meta.to_dict())

    async def mark_in_progress(self) -> MetaRecord:
        """
        Flag the store as being rewritten, keeping the previous chunk count so
        the old chunks stay readable until the new dataset replaces them.
        """
        previous = await self.read_meta()
        meta = MetaRecord(
            chunk_count=previous.chunk_count if previous else 0,
            in_progress=True,
            change_token=previous.change_token if previous else None,
            last_updated=previous.last_updated if previous else None,
        )
        await self.write_meta(meta)
        return meta

    async def mark_unchanged(self, change_token: Optional[str]) -> MetaRecord:
        """
        Close an in-progress marker without rewriting chunks, used when the
        source reports the same change token as the stored dataset.
        """
        previous = await self.read_meta()
        meta = MetaRecord(
            chunk_count=previous.chunk_count if previous else 0,
            in_progress=False,
            change_token=change_token,
            last_updated=time.time(),
        )
        await self.write_meta(meta)
        return meta

    async def write_dataset(
        self,
        records: List[Any],
        change_token: Optional[str] = None
    ) -> MetaRecord:
        """
        Replace the stored dataset.

        Order of writes:
        1. clear the store
        2. meta with inProgress=true and the new chunk count
        3. every chunk, sealed first and then stored in one batch
        4. meta with inProgress=false, change token and timestamp

        Args:
            records: Full dataset
            change_token: Source change token to remember, if any

        Returns:
            MetaRecord: Final meta record

        Raises:
            StorageError: If any write fails; the in-progress meta is left in place
        """
        chunks = split_into_chunks(list(records), self.batch_size)

        await self.backend.clear(self.store_name)
        await self.write_meta(MetaRecord(chunk_count=len(chunks), in_progress=True))

        sealed = {}
        for index, chunk in enumerate(chunks):
            try:
                block = await self.codec.encrypt_records_async(chunk)
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to encode chunk {index} of {self.store_name}: {e}")
                raise StorageError(f"Cannot encode chunk {index}: {e}") from e
            sealed[chunk_key(index)] = block.to_dict()

        try:
            await self.backend.put_many(self.store_name, sealed)
        except StorageError:
            logger.error(f"Failed to write {len(sealed)} chunks of {self.store_name}")
            raise

        meta = MetaRecord(
            chunk_count=len(chunks),
            in_progress=False,
            change_token=change_token,
            last_updated=time.time(),
        )
        await self.write_meta(meta)

        logger.info(
            f"Stored {len(records)} records in {len(chunks)} chunks "
            f"[store={self.store_name}, batch={self.batch_size}]"
        )
        return meta

    async def _read_chunk(self, index: int) -> Optional[List[Any]]:
        raw = await self.backend.get(self.store_name, chunk_key(index))
        if raw is None:
            logger.warning(f"Chunk {index} of {self.store_name} is missing")
            return None

        try:
            block = EncryptedBlock.from_dict(raw)
        except (KeyError, TypeError, binascii.Error) as e:
            logger.warning(f"Chunk {index} of {self.store_name} is malformed: {e}")
            return None

        try:
            return await self.codec.decrypt_records_async(block)
        except AuthenticationError as e:
            logger.warning(f"Chunk {index} of {self.store_name} failed to decrypt: {e}")
            return None

    async def read_dataset(self, strict: bool = False) -> LoadResult:
        """
        Reassemble the dataset from its chunks.

        A missing meta record yields an empty dataset. Missing or undecryptable
        chunks are skipped and reported in LoadResult.missing_chunks.

        Args:
            strict: Raise instead of skipping unreadable chunks

        Raises:
            PartialDatasetError: In strict mode, if any chunk could not be read
        """
        meta = await self.read_meta()
        if meta is None:
            return LoadResult()

        records: List[Any] = []
        missing: List[int] = []

        for index in range(meta.chunk_count):
            chunk = await self._read_chunk(index)
            if chunk is None:
                missing.append(index)
                continue
            records.extend(chunk)

        if missing and strict:
            raise PartialDatasetError(
                f"{len(missing)} of {meta.chunk_count} chunks unreadable in {self.store_name}",
                missing_chunks=missing
            )

        return LoadResult(records=records, missing_chunks=missing, meta=meta)

    async def wipe(self) -> None:
        """Remove every chunk and the meta record."""
        await self.backend.clear(self.store_name)
        logger.info(f"Wiped store {self.store_name}")

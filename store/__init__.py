"""Encrypted chunked persistence: codec, storage backends and the chunked store."""

from store.backends import (
    JsonFileBackend,
    MemoryBackend,
    SqliteBackend,
    StorageBackend,
    create_backend,
)
from store.chunk_store import ChunkedStore, split_into_chunks
from store.codec import EncryptionCodec, derive_key

__all__ = [
    'ChunkedStore',
    'EncryptionCodec',
    'JsonFileBackend',
    'MemoryBackend',
    'SqliteBackend',
    'StorageBackend',
    'create_backend',
    'derive_key',
    'split_into_chunks',
]

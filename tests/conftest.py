"""Shared pytest fixtures for all tests."""

import pytest

from cli.config import Config
from common.types import FetchResult
from store.backends import MemoryBackend
from store.chunk_store import ChunkedStore
from store.codec import EncryptionCodec

# Low iteration count keeps key derivation fast; the KDF itself is the same.
TEST_PBKDF2_ITERATIONS = 1000


class FakeFetcher:
    """Stand-in for RemoteFetcher that counts network calls."""

    def __init__(self, records=None, token=None, error=None):
        self.records = list(records or [])
        self.token = token
        self.error = error
        self.fetch_all_calls = 0
        self.fetch_if_changed_calls = 0
        self.previous_tokens = []

    @property
    def calls(self) -> int:
        return self.fetch_all_calls + self.fetch_if_changed_calls

    async def fetch_all(self, url):
        self.fetch_all_calls += 1
        if self.error:
            raise self.error
        return list(self.records)

    async def fetch_if_changed(self, url, previous_token=None, on_progress=None, ranged=False):
        self.fetch_if_changed_calls += 1
        self.previous_tokens.append(previous_token)
        if self.error:
            raise self.error
        if previous_token and previous_token == self.token:
            return FetchResult(downloaded=False, records=None, token=self.token)
        return FetchResult(downloaded=True, records=list(self.records), token=self.token)


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .island directory
    """
    config_dir = tmp_path / '.island'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def codec():
    return EncryptionCodec(iterations=TEST_PBKDF2_ITERATIONS)


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def make_store(memory_backend, codec):
    """
    Factory for ChunkedStore instances over the shared memory backend.
    """
    def _make(batch_size=2, store_name="LoanNumbers", backend=None):
        return ChunkedStore(backend or memory_backend, codec, store_name, batch_size)
    return _make


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher

"""Tests for CLI command handlers."""

import pytest
from unittest.mock import Mock

from cli import commands
from cli.commands import (
    handle_check,
    handle_peers,
    handle_refresh,
    handle_source,
    handle_status,
    handle_verify,
    handle_wipe,
)
from cli.models import (
    CheckCommand,
    PeersCommand,
    RefreshCommand,
    SourceCommand,
    StatusCommand,
    VerifyCommand,
    WipeCommand,
)
from cli.session import CliSession
from cli.source_client import SourceClient
from common.exceptions import NetworkError
from ingestion.config import IngestionSettings
from ingestion.context import build_context
from peersync.channel import LocalBroadcastHub, LocalChannel
from store.backends import MemoryBackend
from store.chunk_store import chunk_key

TEST_PBKDF2_ITERATIONS = 1000


@pytest.fixture
def hub():
    return LocalBroadcastHub()


@pytest.fixture
def fetcher(fake_fetcher_cls):
    return fake_fetcher_cls(["100", "200", "300"])


@pytest.fixture
def session(monkeypatch, temp_config, hub, fetcher):
    """CliSession over an in-memory store and an in-process channel."""
    monkeypatch.setenv("ISLAND_PBKDF2_ITERATIONS", str(TEST_PBKDF2_ITERATIONS))
    cli_session = CliSession(
        temp_config,
        backend=MemoryBackend(),
        channel=LocalChannel(hub),
        fetcher=fetcher
    )
    yield cli_session
    cli_session.close()


def test_status_on_empty_store(session):
    result = handle_status(StatusCommand(), session=session)

    assert session.store.store_name in result
    assert "empty" in result
    assert "0 records in memory" in result


def test_refresh_then_status(session, fetcher):
    result = handle_refresh(RefreshCommand(), session=session)

    assert "Refreshed: 3 records stored" in result
    assert fetcher.calls == 1

    status = handle_status(StatusCommand(), session=session)
    assert "complete" in status
    assert "3 records in memory" in status


def test_refresh_failure_is_reported(session, fetcher):
    fetcher.error = NetworkError("source down", status=503)

    result = handle_refresh(RefreshCommand(), session=session)

    assert "Refresh failed" in result
    assert "source down" in result


def test_check_against_local_dataset(session, fetcher):
    result = handle_check(CheckCommand(candidates=("200", "999")), session=session)

    assert "✓" in result and "200" in result
    assert "✗" in result and "999" in result
    assert "1/2 present" in result
    assert fetcher.calls == 1


def test_check_over_channel_without_peers(session):
    session.config.data["check_timeout"] = 0.05

    result = handle_check(CheckCommand(candidates=("200",), use_peers=True), session=session)

    assert "0/1 present" in result


def test_check_over_channel_answered_by_peer(session, hub, fake_fetcher_cls):
    settings = IngestionSettings(
        pbkdf2_iterations=TEST_PBKDF2_ITERATIONS,
        ping_max_retries=1,
        ping_initial_delay=0.01,
        context_id="peer",
    )
    peer = build_context(
        settings,
        backend=MemoryBackend(),
        channel=LocalChannel(hub),
        fetcher=fake_fetcher_cls(["200", "300"])
    )
    session.run(peer.node.start())
    session.config.data["check_timeout"] = 1.0

    try:
        result = handle_check(
            CheckCommand(candidates=("100", "200", "300"), use_peers=True),
            session=session
        )
    finally:
        session.run(peer.node.stop())

    assert "2/3 present" in result


def test_verify_empty_store(session):
    assert "Store is empty" in handle_verify(VerifyCommand(), session=session)


def test_verify_after_refresh(session):
    handle_refresh(RefreshCommand(), session=session)

    result = handle_verify(VerifyCommand(), session=session)

    assert "decrypted" in result
    assert "3 records" in result


def test_verify_reports_damaged_chunk(session):
    handle_refresh(RefreshCommand(), session=session)
    store = session.store
    session.run(store.backend.put(store.store_name, chunk_key(0), {"iv": "bogus"}))

    result = handle_verify(VerifyCommand(), session=session)

    assert "Store damaged" in result
    assert "[0]" in result


def test_peers_without_answers(session, monkeypatch):
    monkeypatch.setattr(commands, "PEER_REPLY_WAIT_SECONDS", 0.02)

    result = handle_peers(PeersCommand(), session=session)

    assert "No contexts answered" in result


def test_source_uses_configured_url(session):
    mock_client = Mock(spec=SourceClient)
    mock_client.inspect.return_value = "summary"

    result = handle_source(SourceCommand(), session=session, client=mock_client)

    assert result == "summary"
    mock_client.inspect.assert_called_once_with(session.config.get_source_url())


def test_source_with_url_updates_config(session):
    mock_client = Mock(spec=SourceClient)
    mock_client.inspect.return_value = "summary"
    url = "http://other.test/api/loans"

    handle_source(SourceCommand(url=url), session=session, client=mock_client)

    mock_client.inspect.assert_called_once_with(url)
    assert session.config.get_source_url() == url
    assert session.cache.source_url == url


def test_wipe_clears_store(session):
    handle_refresh(RefreshCommand(), session=session)

    result = handle_wipe(WipeCommand(), session=session)

    assert "wiped" in result
    assert session.run(session.store.read_meta()) is None

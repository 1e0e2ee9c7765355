"""Command handler functions for CLI operations."""

import asyncio
from pathlib import Path
from typing import Optional

from common import protocol
from common.exceptions import IngestionError, PartialDatasetError
from common.logging_config import get_logger
from cli.config import Config
from cli.constants import GREEN, PEER_REPLY_WAIT_SECONDS, RED, RESET, YELLOW
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
from cli.utils import format_age

logger = get_logger(__name__)


_session: Optional[CliSession] = None


def get_session() -> CliSession:
    """
    Get or create global CliSession instance.

    Returns:
        CliSession instance
    """
    global _session
    if _session is None:
        logger.debug("Creating new CliSession instance")
        config = Config(Path.home() / '.island' / 'config.json')
        _session = CliSession(config)
    return _session


def close_session() -> None:
    global _session
    if _session is not None:
        _session.close()
        _session = None


def handle_status(cmd: StatusCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'status' command.

    Returns:
        Store meta and in-memory state
    """
    if session is None:
        session = get_session()

    meta = session.run(session.store.read_meta())
    cache = session.cache

    lines = [
        f"Store:        {session.store.store_name} ({session.store.backend.name})",
        f"Source:       {cache.source_url}",
    ]
    if meta is None:
        lines.append(f"Meta:         {YELLOW}empty{RESET}")
    else:
        progress = f"{YELLOW}in progress{RESET}" if meta.in_progress else f"{GREEN}complete{RESET}"
        lines.append(f"Meta:         {meta.chunk_count} chunks, {progress}")
        lines.append(f"Updated:      {format_age(meta.last_updated)}")
        lines.append(f"Change token: {meta.change_token or 'none'}")
    lines.append(f"Cache:        {cache.state.value}, {cache.record_count} records in memory")
    return "\n".join(lines)


def handle_refresh(cmd: RefreshCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'refresh' command.

    Returns:
        Success or error message
    """
    logger.info("Executing refresh command")
    if session is None:
        session = get_session()

    try:
        session.run(session.cache.refresh())
    except IngestionError as e:
        return f"{RED}Refresh failed: {e}{RESET}"

    return f"{GREEN}Refreshed: {session.cache.record_count} records stored{RESET}"


def handle_check(cmd: CheckCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'check' command.

    Returns:
        Which candidates are in the dataset
    """
    logger.info(f"Executing check command: {len(cmd.candidates)} ids, peers={cmd.use_peers}")
    if session is None:
        session = get_session()

    candidates = list(cmd.candidates)
    if cmd.use_peers:
        allowed = session.run(session.membership_client().check(candidates))
    else:
        allowed = session.run(session.cache.query(candidates))

    allowed_keys = {str(a) for a in allowed}
    lines = []
    for candidate in candidates:
        if candidate in allowed_keys:
            lines.append(f"  {GREEN}✓{RESET} {candidate}")
        else:
            lines.append(f"  {RED}✗{RESET} {candidate}")
    lines.append(f"{len(allowed)}/{len(candidates)} present")
    return "\n".join(lines)


def handle_verify(cmd: VerifyCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'verify' command.

    Returns:
        Integrity report of the stored chunks
    """
    if session is None:
        session = get_session()

    try:
        result = session.run(session.store.read_dataset(strict=True))
    except PartialDatasetError as e:
        return f"{RED}Store damaged: unreadable chunks {e.missing_chunks}{RESET}"

    if result.meta is None:
        return f"{YELLOW}Store is empty{RESET}"

    note = f" {YELLOW}(write in progress){RESET}" if result.meta.in_progress else ""
    return (
        f"{GREEN}All {result.meta.chunk_count} chunks decrypted: "
        f"{len(result.records)} records{RESET}{note}"
    )


async def _count_peers(session: CliSession) -> int:
    pongs = 0

    async def on_message(message: protocol.PeerMessage) -> None:
        nonlocal pongs
        if message.action == protocol.PONG:
            pongs += 1

    channel = session.channel
    channel.add_listener(on_message)
    try:
        await channel.start()
        await channel.send(protocol.ping())
        await asyncio.sleep(PEER_REPLY_WAIT_SECONDS)
    finally:
        channel.remove_listener(on_message)
    return pongs


def handle_peers(cmd: PeersCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'peers' command.

    Returns:
        Number of contexts that answered a ping
    """
    if session is None:
        session = get_session()

    try:
        count = session.run(_count_peers(session))
    except OSError as e:
        return f"{RED}Cannot join broadcast channel: {e}{RESET}"

    if count == 0:
        return f"{YELLOW}No contexts answered{RESET}"
    return f"{GREEN}{count} context(s) answered{RESET}"


def handle_source(
    cmd: SourceCommand,
    session: Optional[CliSession] = None,
    client: Optional[SourceClient] = None
) -> str:
    """
    Handle 'source' command.

    Args:
        cmd: SourceCommand with optional url (defaults to the configured source)
        session: Optional CliSession for dependency injection (testing)
        client: Optional SourceClient for dependency injection (testing)

    Returns:
        Endpoint summary
    """
    if session is None:
        session = get_session()
    if client is None:
        client = SourceClient(session.config)

    url = cmd.url or session.config.get_source_url()
    result = client.inspect(url)
    if cmd.url:
        session.config.set_source_url(cmd.url)
        session.cache.source_url = cmd.url
    return result


def handle_wipe(cmd: WipeCommand, session: Optional[CliSession] = None) -> str:
    """
    Handle 'wipe' command.

    Returns:
        Success or error message
    """
    if session is None:
        session = get_session()

    try:
        session.run(session.store.wipe())
    except IngestionError as e:
        return f"{RED}Wipe failed: {e}{RESET}"
    return f"{GREEN}Store {session.store.store_name} wiped{RESET}"

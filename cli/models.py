"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class StatusCommand:
    """Show store and cache state."""

    command: Literal["status"] = "status"


@dataclass(frozen=True)
class RefreshCommand:
    """Fetch and persist the dataset now."""

    command: Literal["refresh"] = "refresh"


@dataclass(frozen=True)
class CheckCommand:
    """Membership check for a list of ids."""

    candidates: tuple[str, ...]
    use_peers: bool = False
    command: Literal["check"] = "check"


@dataclass(frozen=True)
class VerifyCommand:
    """Decrypt every stored chunk."""

    command: Literal["verify"] = "verify"


@dataclass(frozen=True)
class PeersCommand:
    """Ping the broadcast channel and count answers."""

    command: Literal["peers"] = "peers"


@dataclass(frozen=True)
class SourceCommand:
    """Inspect a dataset endpoint."""

    url: Optional[str] = None
    command: Literal["source"] = "source"


@dataclass(frozen=True)
class WipeCommand:
    """Remove the stored dataset."""

    command: Literal["wipe"] = "wipe"


CommandRequest = (
    StatusCommand
    | RefreshCommand
    | CheckCommand
    | VerifyCommand
    | PeersCommand
    | SourceCommand
    | WipeCommand
)

"""Command parser for CLI input."""

import shlex

from cli.models import (
    CheckCommand,
    CommandRequest,
    PeersCommand,
    RefreshCommand,
    SourceCommand,
    StatusCommand,
    VerifyCommand,
    WipeCommand,
)

PEERS_FLAG = "--peers"


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0].lower()
    args = tokens[1:]

    if command_name == "status":
        return _parse_no_args(args, "status", StatusCommand)
    elif command_name == "refresh":
        return _parse_no_args(args, "refresh", RefreshCommand)
    elif command_name == "check":
        return _parse_check(args)
    elif command_name == "verify":
        return _parse_no_args(args, "verify", VerifyCommand)
    elif command_name == "peers":
        return _parse_no_args(args, "peers", PeersCommand)
    elif command_name == "source":
        return _parse_source(args)
    elif command_name == "wipe":
        return _parse_no_args(args, "wipe", WipeCommand)
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_no_args(args: list[str], name: str, command_cls):
    if args:
        raise ParseError(f"{name} takes no arguments")
    return command_cls()


def _parse_check(args: list[str]) -> CheckCommand:
    """Parse 'check [--peers] id...' command. Ids may also be comma separated."""
    use_peers = PEERS_FLAG in args
    candidates = []
    for arg in args:
        if arg == PEERS_FLAG:
            continue
        candidates.extend(token.strip() for token in arg.split(",") if token.strip())

    if not candidates:
        raise ParseError("check requires at least one id")

    return CheckCommand(candidates=tuple(candidates), use_peers=use_peers)


def _parse_source(args: list[str]) -> SourceCommand:
    """Parse 'source [url]' command."""
    if len(args) > 1:
        raise ParseError("source takes at most one argument: [url]")
    if args and not args[0].startswith(("http://", "https://")):
        raise ParseError(f"Not an http(s) URL: {args[0]}")
    return SourceCommand(url=args[0] if args else None)

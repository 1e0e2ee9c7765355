"""Tests for the REPL command parser."""

import pytest

from cli.models import (
    CheckCommand,
    PeersCommand,
    RefreshCommand,
    SourceCommand,
    StatusCommand,
    WipeCommand,
)
from cli.parser import ParseError, parse_command


def test_simple_commands():
    assert parse_command("status") == StatusCommand()
    assert parse_command("  REFRESH ") == RefreshCommand()
    assert parse_command("peers") == PeersCommand()
    assert parse_command("wipe") == WipeCommand()


def test_check_with_spaces_and_commas():
    cmd = parse_command("check 100 200,300 , 400")

    assert cmd == CheckCommand(candidates=("100", "200", "300", "400"))
    assert cmd.use_peers is False


def test_check_with_peers_flag():
    cmd = parse_command("check --peers 100")

    assert cmd.candidates == ("100",)
    assert cmd.use_peers is True


def test_check_keeps_quoted_ids():
    assert parse_command('check "A 1"').candidates == ("A 1",)


def test_check_requires_ids():
    with pytest.raises(ParseError, match="at least one id"):
        parse_command("check --peers")


def test_source_with_and_without_url():
    assert parse_command("source") == SourceCommand()
    assert parse_command("source http://host:5000/api/loans").url == "http://host:5000/api/loans"


def test_source_rejects_non_http_url():
    with pytest.raises(ParseError, match="Not an http"):
        parse_command("source ftp://host/file")


@pytest.mark.parametrize("line", ["status now", "refresh 1", "wipe all"])
def test_no_arg_commands_reject_arguments(line):
    with pytest.raises(ParseError, match="takes no arguments"):
        parse_command(line)


def test_empty_and_unknown_input():
    with pytest.raises(ParseError, match="Empty command"):
        parse_command("   ")
    with pytest.raises(ParseError, match="Unknown command"):
        parse_command("login alice")


def test_unbalanced_quotes():
    with pytest.raises(ParseError, match="Invalid syntax"):
        parse_command('check "100')

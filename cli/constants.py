"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["status", "refresh", "check", "verify", "peers", "source", "wipe", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2BB3A3 bold",
        "command": "#0088ff bold",
    }
)

TEAL = "\033[38;2;43;179;163m"
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
RESET = "\033[0m"

LOGO = f"""{TEAL}
 ██╗███████╗██╗      █████╗ ███╗   ██╗██████╗
 ██║██╔════╝██║     ██╔══██╗████╗  ██║██╔══██╗
 ██║███████╗██║     ███████║██╔██╗ ██║██║  ██║
 ██║╚════██║██║     ██╔══██║██║╚██╗██║██║  ██║
 ██║███████║███████╗██║  ██║██║ ╚████║██████╔╝
 ╚═╝╚══════╝╚══════╝╚═╝  ╚═╝╚═╝  ╚═══╝╚═════╝
{RESET}"""

WELCOME_TITLE = "Island CLI - Encrypted dataset cache"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "island> "

PEER_REPLY_WAIT_SECONDS = 1.0

HELP_TEXT = """Available commands:
  status                              Show store meta and in-memory state
  refresh                             Fetch the dataset now and persist it
  check [--peers] <id> [<id> ...]     Show which ids are in the dataset
  verify                              Decrypt every chunk and report unreadable ones
  peers                               Count contexts answering a ping
  source [url]                        Inspect a dataset endpoint (size, ETag, ranges)
  wipe                                Remove the stored dataset
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

'check' answers from the local store unless --peers is given, in which
case running contexts are asked over the broadcast channel.
Examples:
  status
  check 100 200 999
  check --peers 100 200
  source http://localhost:5000/files/numbers.txt"""

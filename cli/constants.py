"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["backup", "restore", "cancel", "delete", "reclaim", "info", "connect", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2FA4E7 bold",
        "command": "#0088ff bold",
    }
)

BLUE = "\033[38;2;47;164;231m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RESET = "\033[0m"

LOGO = f"""{BLUE}
 ███╗   ███╗ ██████╗    ██████╗  █████╗  ██████╗██╗  ██╗██╗   ██╗██████╗
 ████╗ ████║██╔════╝    ██╔══██╗██╔══██╗██╔════╝██║ ██╔╝██║   ██║██╔══██╗
 ██╔████╔██║██║         ██████╔╝███████║██║     █████╔╝ ██║   ██║██████╔╝
 ██║╚██╔╝██║██║         ██╔══██╗██╔══██║██║     ██╔═██╗ ██║   ██║██╔═══╝
 ██║ ╚═╝ ██║╚██████╗    ██████╔╝██║  ██║╚██████╗██║  ██╗╚██████╔╝██║
 ╚═╝     ╚═╝ ╚═════╝    ╚═════╝ ╚═╝  ╚═╝ ╚═════╝╚═╝  ╚═╝ ╚═════╝ ╚═╝
{RESET}"""

WELCOME_TITLE = "mcbackup CLI - Serverless Multicast Backup"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "mcbackup> "

HELP_TEXT = """Available commands:
  backup <path> <replication_degree>  Back up a file (degree 1-9)
  restore <path> [content_id]         Restore a file into the peer's restored/ directory
  cancel <content_id>                 Cancel a running restore
  delete <path>                       Delete a backed-up file from every peer
  reclaim <max_kb>                    Set the peer's storage cap and evict chunks
  info                                Show backed-up files, stored chunks and pending deletes
  connect <host> <port>               Talk to another peer's gateway
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Paths are resolved on the peer's host.
Examples:
  backup /data/report.pdf 2
  restore /data/report.pdf
  delete /data/report.pdf
  reclaim 0
  connect peer2 8002"""

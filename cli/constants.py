"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["status", "replicate", "import-url", "delete", "clear", "exit", "help"]

STYLE = Style.from_dict(
    {
        "prompt": "#2E9BD6 bold",
        "command": "#0088ff bold",
    }
)

BLUE = "\033[38;2;46;155;214m"
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

LOGO = f"""{BLUE}
 ┌─┐┌─┐┬  ┬┌─┐┬ ┬  ┬─┐┌─┐┌─┐┬  ┬┌─┐┌─┐┌┬┐┌─┐┬─┐
 ├─┘│ ││  ││  └┬┘  ├┬┘├┤ ├─┘│  ││  ├─┤ │ │ │├┬┘
 ┴  └─┘┴─┘┴└─┘ ┴   ┴└─└─┘┴  ┴─┘┴└─┘┴ ┴ ┴ └─┘┴└─
{RESET}"""

WELCOME_TITLE = "Policy Replicator CLI - replicate policies between trusted nodes"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "replicator> "

HELP_TEXT = """Available commands:
  status <target> [name]                        Show policies on a target (optionally first match of name prefix)
  replicate <source> <targets> <policy> [name]  Replicate a policy (id or name) to comma-separated targets
  import-url <url> <targets> <name>             Import a policy file served at url onto targets
  delete <target> <policy>                      Delete a policy (id or name) or clear its failed replication
  clear                                         Clear screen and redisplay welcome message
  help                                          Show this help
  exit                                          Exit REPL

Use 'localhost' (or '-') to name the local node.
Examples:
  status 10.0.0.5
  replicate localhost 10.0.0.5,10.0.0.6 web_policy
  replicate localhost 10.0.0.5 web_policy web_policy_copy
  import-url https://repo.example.com/web.xml 10.0.0.5 web_policy
  delete 10.0.0.5 web_policy"""

POLICY_ID_PREFIX = "id:"

"""Global functions and variables, used across various modules."""

import getpass
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

import keyring
from keyring import get_password
from keyring.backends import null
from platformdirs import user_data_dir
from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.spinner import Spinner

# Default directories and system details
APP_DIR = user_data_dir("Chatforge")
CONFIG_DIR = os.path.join(APP_DIR, "config")
SESSIONS_DIR = os.path.join(APP_DIR, "sessions")
LOG_DIR = os.path.join(APP_DIR, "logs")
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.json")
SESSIONS_FILE = os.path.join(SESSIONS_DIR, "sessions.json")
USER_NAME = getpass.getuser()

# Keyring service name for the API key
KEYRING_SERVICE = "ChatforgeAPI"

# Terminal integration
CONSOLE = Console()

# Main prompt prefix
PROMPT_PREFIX = HTML("<seagreen>> </seagreen>")

# Yes/no confirmation prompt suffix
CONFIRM_SUFFIX = " (<seagreen>y</seagreen>/<ansired>N</ansired>): "

# Dark style for all prompt_toolkit completers
COMPLETER_STYLER = Style.from_dict(
    {
        # Completions
        "completion-menu.completion": "bg:#202020 #ffffff",
        "completion-menu.completion.current": "bg:#024a1a #000000",  # 2E8B57
        # Tooltips
        "completion-menu.meta.completion": "bg:#202020 #aaaaaa",
        "completion-menu.meta.completion.current": "bg:#024a1a #000000",
    }
)

# Main prompt command completer
COMMAND_COMPLETER = WordCompleter(
    [
        "/config",
        "/exit",
        "/generate",
        "/help",
        "/list",
        "/new",
        "/rename",
        "/save",
        "/switch",
        "/title",
    ],
    match_middle=True,
    WORD=True,
)

# In-memory history for the root prompt, must mutate
main_history = InMemoryHistory()


def ensure_app_dirs():
    """Creates the config, sessions and log directories. Raises OSError on failure."""
    os.makedirs(SESSIONS_DIR, exist_ok=True)
    os.makedirs(CONFIG_DIR, exist_ok=True)
    os.makedirs(LOG_DIR, exist_ok=True)


def init_logger():
    """Initializes the logging system."""
    date_str = datetime.now().strftime("%Y%m%d")
    # Output example: chatforge_20251109.log
    log_path = os.path.join(LOG_DIR, f"chatforge_{date_str}.log")
    # Max of 3 backups, max size of 1MB
    handler = RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )


def log_exception(e: Exception, context: str = ""):
    """Creates a full formatted traceback string and writes it to a log file"""
    import traceback

    # Format the traceback (exception class, exception instance, traceback object)
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    # Add optional context provided by error catchers ('except Exception as e:' blocks)
    msg = f"{context}\n{tb}" if context else tb
    logging.error(msg)


def setup_keyring_backend():
    """Safely detects a keyring backend."""
    try:
        keyring.get_keyring()
    except Exception as e:
        keyring.set_keyring(null.Keyring())
        logging.error(
            f"Keyring backend failed. Falling back to NullBackend. Error: {e}"
        )


def retrieve_key(configured: str = "") -> str:
    """
    Attempts to retrieve an API key.\n
    Prio: config value -> CHATFORGE_API_KEY / OPENAI_API_KEY env -> OS keyring entry
    """
    if configured:
        return configured
    api_key = os.getenv("CHATFORGE_API_KEY") or os.getenv("OPENAI_API_KEY")
    if not api_key:
        try:
            api_key = get_password(KEYRING_SERVICE, USER_NAME)
        except Exception as e:
            logging.warning(f"Keyring lookup failed: {e}")
    return api_key or ""


def spinner_constructor(content: str) -> Spinner:
    return Spinner(
        "moon",
        text=f"[bold medium_orchid]{content}[/bold medium_orchid]",
    )


def root_prompt() -> str:
    return prompt(
        PROMPT_PREFIX,
        completer=COMMAND_COMPLETER,
        style=COMPLETER_STYLER,
        complete_while_typing=False,
        history=main_history,
    )


def confirm(question: str) -> bool:
    """Asks a y/N question. Ctrl+C and Ctrl+D count as 'no'."""
    try:
        # format() escapes the question, commands may contain '<' or '&'
        choice = prompt(HTML("{}" + CONFIRM_SUFFIX).format(question))
    except (KeyboardInterrupt, EOFError):
        return False
    return choice.lower().strip() in ("y", "yes")

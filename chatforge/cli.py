"""Command line entry point. Builds the store handle once and dispatches subcommands."""

import argparse
import sys

from rich.live import Live
from rich.markup import escape

from chatforge import __version__
from chatforge.chat import Chat
from chatforge.cli_controller import CLIController
from chatforge.config import THEMES, Config
from chatforge.errors import ChatforgeError, FormatError, InvalidSessionId, SessionNotFound
from chatforge.file_manager import FileManager
from chatforge.globals import (
    CONSOLE,
    ensure_app_dirs,
    init_logger,
    log_exception,
    setup_keyring_backend,
    spinner_constructor,
)
from chatforge.session_manager import SessionManager
from chatforge.ui import GlobalPanels, UIConstructor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatforge",
        description="Terminal chat client with persistent sessions.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    start = sub.add_parser("start", help="Start a new session (default)")
    start.add_argument("-t", "--title", default="", help="Title of the new session")
    start.add_argument("-r", "--restore", help="Restore this session instead, if it exists")

    sub.add_parser("resume", help="Resume the most recently used session")

    restore = sub.add_parser("restore", help="Restore a session by ID")
    restore.add_argument("session_id")

    ls = sub.add_parser("list", help="List sessions")
    ls.add_argument("-d", "--detail", action="store_true", help="Show timestamps and message counts")
    ls.add_argument("-a", "--all", action="store_true", help="Show every session, not only the latest 20")

    generate = sub.add_parser("generate", help="Write files and run commands from a session's last reply")
    generate.add_argument("session_id")

    export = sub.add_parser("export", help="Export sessions to a JSON file")
    export.add_argument("path")
    export.add_argument("-a", "--all", action="store_true", help="Export the whole store")
    export.add_argument("-s", "--session-id", help="Export one session")

    imp = sub.add_parser("import", help="Import sessions from a JSON file")
    imp.add_argument("path")

    config = sub.add_parser("config", help="Show or change the configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show")
    max_sessions = config_sub.add_parser("set-max-sessions")
    max_sessions.add_argument("max", type=int)
    set_model = config_sub.add_parser("set-model")
    set_model.add_argument("model")
    set_theme = config_sub.add_parser("set-theme")
    set_theme.add_argument("theme", choices=THEMES, type=str.capitalize)
    config_sub.add_parser("toggle-auto-save")

    session = sub.add_parser("session", help="Rename, delete or clean up sessions")
    session_sub = session.add_subparsers(dest="session_command", required=True)
    rename = session_sub.add_parser("rename")
    rename.add_argument("session_id")
    rename.add_argument("new_title")
    delete = session_sub.add_parser("delete")
    delete.add_argument("session_id")
    session_sub.add_parser("cleanup")

    return parser


class App:
    """Wires the store handle and its collaborators together"""

    def __init__(self, config: Config, session: SessionManager):
        self.config = config
        self.session = session
        self.ui = UIConstructor(config, session)
        self.panel = GlobalPanels(session, config, self.ui)
        self.filemanager = FileManager(session, self.panel)
        self.controller = CLIController(
            config, session, self.filemanager, self.panel, self.ui
        )

    def chat(self) -> Chat:
        return Chat(self.config, self.session, self.ui, self.panel, self.controller)

    def save(self):
        self.session.save_to_disk()


def load_state(config: Config, session: SessionManager):
    """Loads the config and session files, tolerating a missing or corrupt session file."""
    config.load()
    try:
        session.load_from_disk()
    except FileNotFoundError:
        pass
    except FormatError as e:
        log_exception(e, "Error loading session file")
        CONSOLE.print(f"[yellow]Warning: could not load session data:[/yellow] {escape(str(e))}\n")


# <~~SUBCOMMANDS~~>
def cmd_start(app: App, args):
    session = app.session
    if args.restore:
        try:
            session.switch(session.resolve_id(args.restore))
            CONSOLE.print(f"[green]Session restored:[/green] {session.active_id}")
        except SessionNotFound:
            CONSOLE.print(f"[yellow]Session not found:[/yellow] {escape(args.restore)}")
            CONSOLE.print(f"[green]New session created:[/green] {session.create(args.title)}")
    else:
        CONSOLE.print(f"[green]New session created:[/green] {session.create(args.title)}")
    chat = app.chat()
    if args.restore and session.active_id and len(session.active_session.messages) > 1:
        chat.render_history()
    chat.run()


def cmd_resume(app: App, args):
    recent = app.session.list_sessions()
    chat = app.chat()
    if recent:
        app.session.switch(recent[0].id)
        CONSOLE.print(f"[green]Resuming the last session:[/green] {recent[0].id}")
        chat.render_history()
    else:
        CONSOLE.print("[dim]No session to resume, creating a new one...[/dim]")
        app.session.create()
    chat.run()


def cmd_restore(app: App, args):
    app.session.switch(app.session.resolve_id(args.session_id))
    CONSOLE.print(f"[green]Switched to session:[/green] {app.session.active_id}")
    chat = app.chat()
    chat.render_history()
    chat.run()


def cmd_list(app: App, args):
    if not app.panel.spawn_sessions_table(detail=args.detail, limit=None if args.all else 20):
        return
    total = len(app.session.sessions)
    if not args.all and total > 20:
        CONSOLE.print(f"[dim]Showing 20 of {total} sessions. Use --all to see every session.[/dim]")


def cmd_generate(app: App, args):
    session_id = app.session.resolve_id(args.session_id)
    app.session.switch(session_id)
    app.filemanager.generate(session_id)
    if app.config.auto_save:
        app.save()


def cmd_export(app: App, args):
    session = app.session
    if args.all:
        path = session.export_all(args.path)
        CONSOLE.print(f"[green]Exported {len(session.sessions)} session(s) to[/green] {path}")
        return
    if args.session_id:
        session_id = session.resolve_id(args.session_id)
    else:
        # No session is active between runs, the most recent one stands in
        recent = session.list_sessions()
        if not recent:
            raise InvalidSessionId("There are no sessions to export.")
        session_id = recent[0].id
    path = session.export_session(args.path, session_id)
    CONSOLE.print(f"[green]Exported session[/green] {session_id} [green]to[/green] {path}")


def cmd_import(app: App, args):
    count = app.session.import_file(args.path)
    app.save()
    CONSOLE.print(f"[green]Imported {count} session(s) from[/green] {args.path}")


def cmd_config(app: App, args):
    config = app.config
    command = args.config_command
    if command == "show":
        CONSOLE.print(app.ui.settings_chart_constructor())
        return
    if command == "set-max-sessions":
        config.set_max_sessions(args.max)
        CONSOLE.print(f"[green]Max sessions set to:[/green] {args.max}")
    elif command == "set-model":
        config.default_model["name"] = args.model
        config.default_model["model"] = args.model
        CONSOLE.print(f"[green]Default model set to:[/green] {args.model}")
    elif command == "set-theme":
        config.set_theme(args.theme)
        CONSOLE.print(f"[green]Theme set to:[/green] {config.theme}")
    elif command == "toggle-auto-save":
        config.auto_save = not config.auto_save
        state = "on" if config.auto_save else "off"
        color = "green" if config.auto_save else "red"
        CONSOLE.print(f"Auto-save toggled [{color}]{state}[/{color}].")
    config.save()


def cmd_session(app: App, args):
    session = app.session
    command = args.session_command
    if command == "rename":
        session_id = session.resolve_id(args.session_id)
        session.rename(session_id, args.new_title)
        CONSOLE.print(
            f"[green]Session[/green] {session_id} [green]renamed to[/green] {escape(args.new_title)}"
        )
    elif command == "delete":
        session_id = session.resolve_id(args.session_id)
        session.remove(session_id)
        CONSOLE.print(f"[green]Session deleted:[/green] {session_id}")
    elif command == "cleanup":
        before = len(session.sessions)
        evicted = session.cleanup()
        CONSOLE.print(
            f"[green]Cleaned up {len(evicted)} session(s),[/green] {len(session.sessions)} of {before} remain."
        )
    app.save()


COMMANDS = {
    "start": cmd_start,
    "resume": cmd_resume,
    "restore": cmd_restore,
    "list": cmd_list,
    "generate": cmd_generate,
    "export": cmd_export,
    "import": cmd_import,
    "config": cmd_config,
    "session": cmd_session,
}


# <~~MAIN FLOW~~>
def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)
    if args.command is None:
        args = build_parser().parse_args(["start"])

    try:
        ensure_app_dirs()
    except OSError as e:
        CONSOLE.print(f"[red]Could not create the application directories:[/red] {e}")
        sys.exit(1)

    app = None
    try:
        # Start a spinner, mostly for cold starts
        with Live(spinner_constructor("Launching Chatforge..."), refresh_per_second=8, console=CONSOLE):
            init_logger()
            setup_keyring_backend()
            config = Config()
            session = SessionManager(config)
            load_state(config, session)
            app = App(config, session)
        COMMANDS[args.command](app, args)
    except (KeyboardInterrupt, EOFError):
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
    except (ChatforgeError, ValueError, OSError) as e:
        log_exception(e, f"Error in '{args.command}' command")
        if app:
            app.panel.spawn_error_panel("ERROR", f"{e}")
        else:
            CONSOLE.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except Exception as e:
        log_exception(e, "Critical startup error")  # Log any critical errors
        CONSOLE.print(f"[red]Critical error:[/red] {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Slash command interactivity logic lives here."""

import sys

from prompt_toolkit import prompt
from prompt_toolkit.formatted_text import HTML
from rich.markup import escape

from chatforge.errors import ChatforgeError
from chatforge.globals import COMPLETER_STYLER, CONSOLE, log_exception


class CLIController:
    """Handles and supports all slash command input"""

    def __init__(self, config, session, filemanager, panel, ui):
        self.config = config
        self.ui = ui
        self.session = session
        self.filemanager = filemanager
        self.panel = panel
        self.interface = None

        # Command dict, every handler takes the argument string
        self.commands = {
            "exit": self.exit_app,
            "list": self.list_sessions,
            "switch": self.switch_session,
            "new": self.new_session,
            "save": self.save_sessions,
            "rename": self.rename_session,
            "title": self.show_title,
            "config": self.spawn_settings_chart,
            "help": self.spawn_help_chart,
            "generate": self.generate_artifacts,
        }

    # <~~HELPERS~~>
    def _prompt_wrapper(
        self, prefix, cancel_msg="Canceled.", allow_empty=False, **kwargs
    ) -> str | None:
        """Prompt_toolkit wrapper for validating input."""
        try:
            # **kwargs passes completers, styles, history, etc automatically
            user_input = prompt(prefix, **kwargs)
            stripped = user_input.strip()
            if not stripped and not allow_empty:
                CONSOLE.print("[dim]No input detected.[/dim]\n")
                return None
            return stripped
        except (KeyboardInterrupt, EOFError):
            CONSOLE.print(f"[dim]{cancel_msg}[/dim]\n")
            return None

    def _ask_session_id(self) -> str | None:
        if not self.panel.spawn_sessions_table():
            return None
        return self._prompt_wrapper(
            HTML("Enter a session ID<seagreen>:</seagreen> "),
            completer=self.filemanager.session_completer(),
            validator=self.filemanager.session_validator(),
            validate_while_typing=False,
            style=COMPLETER_STYLER,
        )

    def handle_input(self, user_input: str) -> bool:
        """Parse user input for a slash command & handle it. Returns False for chat input."""
        if not user_input.startswith("/"):
            return False
        name, _, args = user_input[1:].strip().partition(" ")
        handler = self.commands.get(name.lower())
        if handler is None:
            CONSOLE.print(f"[red]Unknown command:[/red] {escape(user_input)}")
            self.spawn_help_chart()
            return True
        try:
            handler(args.strip())
        except ChatforgeError as e:
            self.panel.spawn_error_panel("SESSION ERROR", f"{e}")
        return True

    def set_interface(self, chat_interface):
        """Setter to inject the Chat/Renderer instance."""
        self.interface = chat_interface

    # <~~CHARTS~~>
    def spawn_help_chart(self, _args: str = ""):
        """Markdown usage chart."""
        CONSOLE.print(self.ui.help_chart_constructor())
        CONSOLE.print()

    def spawn_settings_chart(self, _args: str = ""):
        """Markdown settings chart."""
        CONSOLE.print(self.ui.settings_chart_constructor())
        CONSOLE.print()

    # <~~SESSION MANAGEMENT~~>
    def exit_app(self, _args: str = ""):
        """Saves when auto-save is on, then exits"""
        if self.config.auto_save:
            self.save_sessions()
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
        sys.exit(0)

    def list_sessions(self, _args: str = ""):
        """Fetches the session list and displays it."""
        if self.panel.spawn_sessions_table():
            CONSOLE.print()

    def switch_session(self, args: str = ""):
        """Switches the active session and replays its history"""
        target = args or self._ask_session_id()
        if not target:
            return
        session_id = self.session.resolve_id(target)
        self.session.switch(session_id)
        if self.interface:
            self.interface.render_history()
        active = self.session.active_session
        CONSOLE.print(
            f"[green]Switched to session:[/green] {escape(active.title or 'untitled')} "
            f"[dim][ID: {active.short_id}][/dim]"
        )
        self.panel.spawn_status_panel(toks=False)

    def new_session(self, args: str = ""):
        """Creates a session, the title is derived from the first message when omitted"""
        session_id = self.session.create(args)
        CONSOLE.print(
            f"[green]New session created:[/green] {escape(args or 'untitled')} "
            f"[dim][ID: {session_id[:8]}][/dim]\n"
        )

    def save_sessions(self, _args: str = ""):
        """Saves every session to the session file"""
        try:
            self.session.save_to_disk()
            CONSOLE.print(f"[green]Sessions saved in:[/green] {self.session.sessions_file}\n")
        except OSError as e:
            log_exception(e, "Error in save_sessions()")
            self.panel.spawn_error_panel("ERROR SAVING", f"{e}")

    def rename_session(self, args: str = ""):
        """Renames the active session"""
        title = args or self._prompt_wrapper(HTML("Enter a new title<seagreen>:</seagreen> "))
        if not title:
            return
        self.session.rename(self.session.active_session.id, title)
        CONSOLE.print(f"[green]Session renamed to:[/green] {escape(title)}\n")

    def show_title(self, _args: str = ""):
        active = self.session.active_session
        CONSOLE.print(
            f"[cyan]Current session:[/cyan] {escape(active.title or 'untitled')} "
            f"[dim][ID: {active.id}][/dim]\n"
        )

    def generate_artifacts(self, args: str = ""):
        """Writes files and runs commands found in a session's last reply"""
        session_id = self.session.resolve_id(args) if args else None
        self.filemanager.generate(session_id)

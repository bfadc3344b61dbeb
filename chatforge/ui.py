"""Builds and spawns UI objects. UIConstructor and GlobalPanels live here."""

import textwrap

from rich import box
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chatforge import __version__
from chatforge.artifacts import ExtractionReport
from chatforge.globals import CONSOLE, LOG_DIR

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class UIConstructor:
    """Constructs and returns various UI objects"""

    def __init__(self, config, session):
        self.config = config
        self.session = session

    def response_panel_constructor(self) -> Panel:
        return Panel(
            "",
            title=Text("💬 Response", style="bold green"),
            title_align="left",
            border_style="green",
            style="default",
            width=None,
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def user_panel_constructor(self, content: str) -> Panel:
        return Panel(
            Text(content),
            box=box.HORIZONTALS,
            padding=(0, 0),
            title=Text("🌐 You", style="bold blue"),
            title_align="left",
            border_style="blue",
            style="default",
        )

    def assistant_panel_constructor(self, content: str) -> Panel:
        return Panel(
            Markdown(content, code_theme=self.config.code_theme),
            title=Text("💬 Response", style="bold green"),
            title_align="left",
            border_style="green",
            style="default",
            width=None,
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def status_panel_constructor(self, toks=True) -> Panel:
        session = self.session.get_active()
        status_text = Text.assemble((" ", "cyan"))
        if session:
            status_text.append(f"Session: {session.title or 'untitled'} ")
            status_text.append(f"[{session.short_id}]", style="dim")
            status_text.append(" | ")
        if toks:
            status_text.append(f"Tokens: {self.session.count_tokens()} | ")
        status_text.append(f"Turn: {self.session.count_turns()}")
        return Panel(
            status_text,
            border_style="dim",
            style="dim",
            expand=False,
        )

    def intro_panel_constructor(self) -> Panel:
        session = self.session.get_active()
        intro_text = Text.assemble(
            ("Model: ", "bold sandy_brown"),
            (f"{self.config.model_name}"),
            ("\nEndpoint: ", "bold sandy_brown"),
            (f"{self.config.api_url}"),
            ("\nSystem Prompt: ", "bold sandy_brown"),
            (f"{self.config.system_prompt}", "italic"),
        )
        if session:
            intro_text.append("\nSession: ", "bold sandy_brown")
            intro_text.append(f"{session.title or 'untitled'} [ID: {session.short_id}]")
        return Panel(
            intro_text,
            title=Text(f"🔨 Chatforge {__version__}", "bold medium_orchid"),
            title_align="left",
            border_style="medium_orchid",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def error_panel_constructor(self, error: str, exception: str) -> Panel:
        return Panel(
            escape(exception),
            title=Text(f"❌ {error}", style="bold red"),
            title_align="left",
            border_style="red",
            expand=False,
        )

    def sessions_table_constructor(self, detail=False, limit: int | None = None) -> Table:
        table = Table(box=box.SIMPLE_HEAD, header_style="bold cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Title")
        table.add_column("ID", style="sandy_brown")
        if detail:
            table.add_column("Created")
            table.add_column("Last Accessed")
            table.add_column("Messages", justify="right")
        for i, s in enumerate(self.session.list_sessions()[:limit], start=1):
            title = escape(s.title or "untitled")
            if s.id == self.session.active_id:
                title += " [green](active)[/green]"
            if detail:
                table.add_row(
                    str(i),
                    title,
                    s.id,
                    s.created_at.astimezone().strftime(TIME_FORMAT),
                    s.last_accessed.astimezone().strftime(TIME_FORMAT),
                    str(len(s.messages)),
                )
            else:
                table.add_row(str(i), title, s.short_id)
        return table

    def artifacts_panel_constructor(self, report: ExtractionReport) -> Panel:
        lines = []
        if report.files:
            lines.append("### Files")
            lines.extend(
                f"- `{f.path}` ({f.action or 'write'}, {len(f.content.splitlines())} lines)"
                for f in report.files
            )
        if report.commands:
            lines.append("### Commands")
            lines.append("```bash\n" + "\n".join(report.commands) + "\n```")
        if report.diagnostics:
            lines.append("### Skipped")
            lines.extend(f"- {d}" for d in report.diagnostics)
        return Panel(
            Markdown("\n".join(lines), code_theme=self.config.code_theme),
            title=Text("📦 Artifacts", style="bold orange1"),
            title_align="left",
            border_style="orange1",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def help_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent("""
            | **Session Management** | *In-session commands* |
            | --- | ----------- |
            | `/new [title]` | Create a new session and switch to it. |
            | `/switch <id>` | Switch to another session. A unique ID prefix is enough. |
            | `/list` | List all sessions, most recently used first. |
            | `/rename <title>` | Rename the current session. |
            | `/title` | Show the current session title. |
            | `/save` | Save all sessions to disk. |
            | `/generate [id]` | Write files and run commands from the last reply. |
            | `/config` | Display your current configuration. |
            | `/help` | Show this chart. |
            | `/exit` | Exit Chatforge. Sessions are saved when auto-save is on. |
            | | |
            | `Ctrl + C` | Abort mid-stream and return to the prompt. Also acts as an immediate exit. |
            """)
        )

    def settings_chart_constructor(self) -> Markdown:
        model = self.config.default_model
        return Markdown(
            textwrap.dedent(f"""
            | **Current Settings** | *Your current persistent settings* |
            | --- | ----------- |
            | **Max Sessions**: | *{self.config.max_sessions}* |
            | **Auto Save**: | *{self.config.auto_save}* |
            | **Model**: | *{model.get('name')}* (`{model.get('model')}`) |
            | **Provider**: | *{model.get('provider')}* |
            | **Endpoint**: | *{model.get('api_url')}* |
            | **Theme**: | *{self.config.theme}* |
            | **System Prompt**: | *{self.config.system_prompt}* |
            - Your configuration file is located at: `{self.config.path}`
            - Your session file is located at:       `{self.session.sessions_file}`
            - Your error logs are located at:        `{LOG_DIR}`
            """)
        )


class GlobalPanels:
    """Global panel spawner"""

    def __init__(self, session, config, ui: UIConstructor):
        self.session = session
        self.config = config
        self.ui: UIConstructor = ui

    def spawn_intro_panel(self):
        """Simple welcome panel, prints on application launch."""
        CONSOLE.print(self.ui.intro_panel_constructor())
        CONSOLE.print(Markdown("Type `/help` for a list of commands."))
        CONSOLE.print()

    def spawn_status_panel(self, toks=True):
        """Prints a status panel."""
        CONSOLE.print(self.ui.status_panel_constructor(toks))
        CONSOLE.print()

    def spawn_error_panel(self, error: str, exception: str):
        """Error panel template, used by the controllers and main()"""
        CONSOLE.print(self.ui.error_panel_constructor(error, exception))
        CONSOLE.print()

    def spawn_user_panel(self, content: str):
        """Spawns the user panel."""
        CONSOLE.print()
        CONSOLE.print(self.ui.user_panel_constructor(content))
        CONSOLE.print()

    def spawn_assistant_panel(self, content: str):
        """Spawns the Response panel - for a scrollable history."""
        CONSOLE.print(self.ui.assistant_panel_constructor(content))

    def spawn_sessions_table(self, detail=False, limit: int | None = None) -> bool:
        """Prints the session table. Returns False when there is nothing to list."""
        if not self.session.sessions:
            CONSOLE.print("[dim]No saved sessions found.[/dim]\n")
            return False
        CONSOLE.print(self.ui.sessions_table_constructor(detail, limit))
        return True

    def spawn_artifacts_panel(self, report: ExtractionReport):
        CONSOLE.print(self.ui.artifacts_panel_constructor(report))
        CONSOLE.print()

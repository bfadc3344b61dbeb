"""Main chat loop. Streams replies into a live panel and records each turn."""

import asyncio
import time

from rich.console import Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel

from chatforge.errors import ChatforgeError
from chatforge.globals import CONSOLE, log_exception, retrieve_key, root_prompt
from chatforge.stream import CompletionClient, StreamResult

# Live display refresh rate, also the frame limit for markdown re-rendering
REFRESH_RATE = 30


class Chat:
    """Houses the main application logic"""

    def __init__(self, config, session, ui, panel, controller, client=None):
        self.config = config
        self.session = session
        self.ui = ui
        self.panel = panel
        self.controller = controller
        self.controller.set_interface(self)

        self.client: CompletionClient = client or CompletionClient(
            api_url=self.config.api_url,
            api_key=retrieve_key(self.config.default_model.get("api_key", "")),
            model=self.config.model_id,
        )

        # Placeholder for live display object
        self.live: Live | None = None
        self.response_panel: Panel = Panel("")
        self.response_buffer: list[str] = []
        self.full_response_content: str = ""
        self.last_update_time: float = time.monotonic()
        self.max_height: int = 0
        self.response_limit: int = 0

    # <~~STATE~~>
    def reset_turn_state(self):
        """Little helper that resets the turn state."""
        self.full_response_content = ""
        self.response_buffer.clear()
        self.response_panel = Panel("")

    def _terminal_height_setter(self):
        """Scales the live panel limit, the terminal may be resized between turns."""
        if self.max_height != CONSOLE.size.height:
            self.max_height = CONSOLE.size.height
            self.response_limit = int(self.max_height * 1.5)

    # <~~STREAMING~~>
    def init_rich_live(self):
        """Defines and starts a rich live instance for the streaming loop."""
        self.response_panel = self.ui.response_panel_constructor()
        self.live = Live(
            Group(self.response_panel),
            console=CONSOLE,
            screen=False,
            refresh_per_second=REFRESH_RATE,
        )
        self.live.start()

    def on_delta(self, delta: str):
        """Receives each streamed delta, renders at most REFRESH_RATE times a second"""
        self.response_buffer.append(delta)
        current_time = time.monotonic()
        if self.live and current_time - self.last_update_time >= 1 / REFRESH_RATE:
            self.full_response_content += "".join(self.response_buffer)
            self.response_buffer.clear()
            # Past the panel limit, skip re-rendering until the final flush
            if len(self.full_response_content.splitlines()) < self.response_limit:
                self.response_panel.renderable = Markdown(
                    self.full_response_content, code_theme=self.config.code_theme
                )
                self.live.refresh()
            self.last_update_time = current_time

    def buffer_flusher(self, result: StreamResult):
        """Renders the complete reply once the stream has ended."""
        self.response_buffer.clear()
        self.full_response_content = result.content
        if self.live:
            self.response_panel.renderable = Markdown(
                self.full_response_content, code_theme=self.config.code_theme
            )
            self.live.refresh()

    def stream_response(self) -> StreamResult | None:
        """
        Facilitates the entire streaming process, including:
        - The API interaction
        - Live rendering of each delta
        - Appending the final response to the active session
        """
        self.reset_turn_state()
        self._terminal_height_setter()
        result: StreamResult | None = None
        try:
            self.init_rich_live()
            result = asyncio.run(
                self.client.stream_chat(self.session.request_messages(), self.on_delta)
            )
            self.buffer_flusher(result)
        # Allows the user to safely use Ctrl+C to end streaming abruptly
        except KeyboardInterrupt:
            result = None
        except ChatforgeError as e:
            log_exception(e, "Error in stream_response()")
            if self.live:
                self.live.stop()
                self.live = None
            self.panel.spawn_error_panel("API ERROR", f"{e}")
            result = None
        finally:
            if self.live:
                self.live.stop()
                self.live = None

        if result is None or not result.content:
            # Aborted or empty turn, drop the unanswered user message
            self.session.correct_history()
            return result

        self.session.append_message("assistant", result.content)
        if result.diagnostics:
            CONSOLE.print(
                f"[yellow]{len(result.diagnostics)} malformed chunk(s) skipped, see the log for details.[/yellow]"
            )
        if self.config.auto_save:
            self.controller.save_sessions()
        else:
            CONSOLE.print()
        self.panel.spawn_status_panel()
        return result

    # <~~HISTORY~~>
    def render_history(self):
        """Prints a scrollable history of the active session."""
        for msg in self.session.active_session.messages:
            content = msg.content.strip()
            if not content:
                continue
            if msg.role == "user":
                self.panel.spawn_user_panel(content)
            elif msg.role == "assistant":
                self.panel.spawn_assistant_panel(content)

    # <~~RUN~~>
    def run(self):
        """Prompts for input until /exit, Ctrl+C or Ctrl+D"""
        self.panel.spawn_intro_panel()
        while True:
            try:
                user_input = root_prompt()
            except (KeyboardInterrupt, EOFError):
                self.controller.exit_app()
                break
            if not user_input.strip():
                continue
            if self.controller.handle_input(user_input.strip()):
                continue
            try:
                self.session.append_message("user", user_input)
            except ChatforgeError as e:
                self.panel.spawn_error_panel("SESSION ERROR", f"{e}")
                continue
            CONSOLE.print()
            self.stream_response()

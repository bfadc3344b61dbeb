"""Artifact I/O. Writes generated files and runs extracted commands after confirmation."""

# Custom validators and word completers live here as well.

import os
from dataclasses import dataclass, field

from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.validation import Validator
from rich.markup import escape

from chatforge.artifacts import extract_artifacts, run_command, write_artifact
from chatforge.globals import CONSOLE, confirm, log_exception


@dataclass
class GenerationSummary:
    written: list[str] = field(default_factory=list)
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class FileManager:
    """Handles artifact-related I/O"""

    def __init__(self, session, panel, root: str | None = None):
        self.session = session
        self.panel = panel
        # Relative artifact paths resolve against this directory (cwd when None)
        self.root = root

    def session_completer(self) -> WordCompleter:
        """Session id completion helper, titles shown as meta text"""
        sessions = self.session.list_sessions()
        return WordCompleter(
            [s.id for s in sessions],
            meta_dict={s.id: s.title for s in sessions},
            ignore_case=True,
            sentence=True,
        )

    def session_validator(self) -> Validator:
        """Prompt_toolkit session id validator"""

        def _validator(text: str) -> bool:
            return any(sid.startswith(text.strip()) for sid in self.session.sessions)

        return Validator.from_callable(
            _validator,
            error_message="Unknown session id.",
            move_cursor_to_end=True,
        )

    def generate(self, session_id: str | None = None) -> GenerationSummary | None:
        """Extracts artifacts from the last reply and applies them, one confirmation at a time"""
        text = self.session.last_assistant_message(session_id)
        if not text:
            CONSOLE.print("[dim]No assistant response found to generate from.[/dim]\n")
            return None

        report = extract_artifacts(text)
        if report.empty and not report.diagnostics:
            CONSOLE.print("[dim]No annotated code blocks found in the last response.[/dim]\n")
            return None
        self.panel.spawn_artifacts_panel(report)

        summary = GenerationSummary()
        if report.files and confirm(f"Generate {len(report.files)} file(s)?"):
            for artifact in report.files:
                try:
                    path = write_artifact(artifact, self.root)
                    summary.written.append(str(path))
                    CONSOLE.print(f"[green]File generated:[/green] {escape(str(path))}")
                except OSError as e:
                    log_exception(e, f"Error in generate() - file: {artifact.path}")
                    summary.failed.append(artifact.path)
                    self.panel.spawn_error_panel("ERROR WRITING FILE", f"{artifact.path}: {e}")
            CONSOLE.print()

        if report.commands and confirm(
            f"Detected {len(report.commands)} command(s). Review them for execution?"
        ):
            for command in report.commands:
                if not confirm(f"Run '{command}'?"):
                    CONSOLE.print(f"[dim]Skipped:[/dim] {escape(command)}")
                    continue
                try:
                    status = run_command(command, self.root or os.getcwd())
                except OSError as e:
                    log_exception(e, f"Error in generate() - command: {command}")
                    summary.failed.append(command)
                    self.panel.spawn_error_panel("ERROR RUNNING COMMAND", f"{e}")
                    continue
                if status != 0:
                    summary.failed.append(command)
                    CONSOLE.print(f"[red]Command failed (exit {status}):[/red] {escape(command)}")
                else:
                    summary.executed.append(command)
            CONSOLE.print()
        return summary

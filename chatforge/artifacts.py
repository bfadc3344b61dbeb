"""
Extracts file and command artifacts from the fenced code blocks of a reply.

A block opts in with a metadata header placed right after the opening fence:

    ```python
    <!-- FILE_METADATA
    path: src/app.py
    action: create
    -->
    print("hello")
    ```

Blocks whose `action` is `execute` contribute shell commands, every other block
becomes a file to write at `path`. A block without a header has no metadata,
so it is reported as missing its path. Extraction is pure: it never touches
the filesystem and reports per-block problems as diagnostics.
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from chatforge.errors import ChatforgeError, MissingPathMetadata

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```[\s\S]*?```")
METADATA_START = "<!-- FILE_METADATA"
METADATA_END = "-->"
EXECUTE_ACTION = "execute"

# Anything shorter cannot hold both fences
MIN_BLOCK_LENGTH = 6


@dataclass
class FileArtifact:
    """A file to write. `metadata` keeps every header key, not only `path`."""

    metadata: dict[str, str]
    content: str

    @property
    def path(self) -> str:
        return self.metadata["path"]

    @property
    def action(self) -> str:
        return self.metadata.get("action", "")


@dataclass
class Diagnostic:
    """A recovered problem with one fenced block."""

    block: int
    message: str
    error: ChatforgeError | None = None

    def __str__(self) -> str:
        return f"block {self.block}: {self.message}"


@dataclass
class ExtractionReport:
    files: list[FileArtifact] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.files and not self.commands

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.error is not None]


def find_fenced_blocks(text: str) -> tuple[list[str], list[Diagnostic]]:
    """Returns the body of every fenced region, in source order"""
    bodies: list[str] = []
    diagnostics: list[Diagnostic] = []
    for index, match in enumerate(FENCE_PATTERN.finditer(text), start=1):
        region = match.group(0)
        if len(region) < MIN_BLOCK_LENGTH:
            diagnostics.append(Diagnostic(index, f"code block too short: {region!r}"))
            continue
        bodies.append(region[3:-3].strip())
    return bodies, diagnostics


def parse_metadata(body: str) -> tuple[dict[str, str], int | None, list[str]]:
    """
    Reads the metadata header of one block body.

    Returns (metadata, index of the first line after the header, warnings).
    The index is None when the block carries no complete header.
    """
    lines = body.split("\n")
    start = next(
        (i for i, line in enumerate(lines) if line.strip().startswith(METADATA_START)),
        None,
    )
    if start is None:
        return {}, None, []
    end = next(
        (i for i in range(start + 1, len(lines)) if lines[i].strip() == METADATA_END),
        None,
    )
    if end is None:
        return {}, None, ["metadata header is missing its closing '-->' line"]

    metadata: dict[str, str] = {}
    warnings: list[str] = []
    for line in lines[start + 1 : end]:
        if not line.strip():
            continue
        key, sep, value = line.partition(": ")
        if not sep or not key.strip():
            warnings.append(f"invalid metadata line format: {line!r}")
            continue
        metadata[key.strip()] = value.strip()
    return metadata, end + 1, warnings


def _command_lines(lines: list[str]) -> list[str]:
    """Non-empty lines that are not '#' comments"""
    return [
        line.strip()
        for line in lines
        if line.strip() and not line.lstrip().startswith("#")
    ]


def _file_content(lines: list[str]) -> str:
    """Joins the lines after the header, skipping leading blank lines"""
    first = next((i for i, line in enumerate(lines) if line.strip()), len(lines))
    return "\n".join(lines[first:])


def extract_artifacts(text: str) -> ExtractionReport:
    """
    Classifies every fenced block of `text` into files and commands.

    Problems with a single block (too short, bad metadata line, missing path)
    are recorded in the report and never stop the remaining blocks.
    """
    text = text.replace("\r\n", "\n")
    report = ExtractionReport()
    bodies, diagnostics = find_fenced_blocks(text)
    report.diagnostics.extend(diagnostics)

    for index, body in enumerate(bodies, start=1):
        metadata, content_start, warnings = parse_metadata(body)
        report.diagnostics.extend(Diagnostic(index, w) for w in warnings)
        # Without a complete header the whole body is content
        rest = body.split("\n")[content_start or 0 :]
        if metadata.get("action") == EXECUTE_ACTION:
            report.commands.extend(_command_lines(rest))
            continue

        if "path" not in metadata or not metadata["path"]:
            error = MissingPathMetadata(f"code block {index} is missing path metadata")
            report.diagnostics.append(Diagnostic(index, str(error), error))
            continue
        report.files.append(FileArtifact(metadata, _file_content(rest)))

    for diagnostic in report.diagnostics:
        logger.warning(f"Artifact extraction, {diagnostic}")
    return report


def write_artifact(artifact: FileArtifact, root: str | Path | None = None) -> Path:
    """Creates parent directories and (over)writes the file. Returns the path written."""
    path = Path(artifact.path).expanduser()
    if root is not None and not path.is_absolute():
        path = Path(root) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(artifact.content, encoding="utf-8")
    return path


def run_command(command: str, cwd: str | Path | None = None) -> int:
    """Runs one command through the host shell and returns its exit status"""
    completed = subprocess.run(command, shell=True, cwd=cwd)
    return completed.returncode

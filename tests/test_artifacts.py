"""
Artifact extraction tests.

- Header-bearing blocks become files or commands
- Per-block problems are reported without stopping the other blocks
- Writing and running touch only tmp_path
"""

from chatforge.artifacts import (
    FileArtifact,
    extract_artifacts,
    find_fenced_blocks,
    parse_metadata,
    run_command,
    write_artifact,
)
from chatforge.errors import MissingPathMetadata

FILE_BLOCK = """Here you go:

```text
<!-- FILE_METADATA
path: out/a.txt
action: create
-->
hello
```
"""

COMMAND_BLOCK = """```bash
<!-- FILE_METADATA
action: execute
-->
echo a
# comment

echo b
```"""

NO_PATH_BLOCK = """```python
<!-- FILE_METADATA
action: create
-->
print("orphan")
```"""


# 1. Extraction


def test_file_block_becomes_file_artifact():
    report = extract_artifacts(FILE_BLOCK)

    assert len(report.files) == 1
    assert report.commands == []
    assert report.diagnostics == []
    artifact = report.files[0]
    assert artifact.path == "out/a.txt"
    assert artifact.action == "create"
    assert artifact.content == "hello"


def test_execute_block_yields_commands_without_comments():
    report = extract_artifacts(COMMAND_BLOCK)

    assert report.commands == ["echo a", "echo b"]
    assert report.files == []


def test_missing_path_is_reported_and_siblings_survive():
    text = "\n\n".join([FILE_BLOCK, NO_PATH_BLOCK, COMMAND_BLOCK])
    report = extract_artifacts(text)

    assert [f.path for f in report.files] == ["out/a.txt"]
    assert report.commands == ["echo a", "echo b"]
    assert len(report.errors) == 1
    assert isinstance(report.errors[0].error, MissingPathMetadata)
    assert report.errors[0].block == 2


def test_code_block_without_header_is_missing_path():
    report = extract_artifacts("```python\nprint('no header')\n```")

    assert report.empty
    assert len(report.errors) == 1
    assert isinstance(report.errors[0].error, MissingPathMetadata)


def test_crlf_line_endings_are_normalized():
    report = extract_artifacts(FILE_BLOCK.replace("\n", "\r\n"))
    assert report.files[0].content == "hello"


def test_leading_blank_lines_after_header_are_skipped():
    text = "```\n<!-- FILE_METADATA\npath: b.py\n-->\n\n\nx = 1\ny = 2\n```"
    report = extract_artifacts(text)
    assert report.files[0].content == "x = 1\ny = 2"


def test_find_fenced_blocks_pairs_fences_in_order():
    bodies, diagnostics = find_fenced_blocks("```one```\ntext\n```\ntwo\n```")
    assert bodies == ["one", "two"]
    assert diagnostics == []


# 2. Metadata header


def test_parse_metadata_keeps_every_key():
    body = "<!-- FILE_METADATA\npath: a.txt\nmode: 0644\n-->\ncontent"
    metadata, start, warnings = parse_metadata(body)

    assert metadata == {"path": "a.txt", "mode": "0644"}
    assert body.split("\n")[start] == "content"
    assert warnings == []


def test_malformed_metadata_line_is_a_warning():
    body = "<!-- FILE_METADATA\npath: a.txt\nnot a pair\n-->\ncontent"
    metadata, start, warnings = parse_metadata(body)

    assert metadata == {"path": "a.txt"}
    assert start is not None
    assert len(warnings) == 1


def test_unterminated_header_is_warned_and_missing_path():
    report = extract_artifacts("```\n<!-- FILE_METADATA\npath: a.txt\ncontent\n```")

    assert report.empty
    assert len(report.diagnostics) == 2
    assert "closing" in report.diagnostics[0].message
    assert isinstance(report.errors[0].error, MissingPathMetadata)


def test_value_may_contain_separator():
    metadata, _, _ = parse_metadata("<!-- FILE_METADATA\npath: dir/a: b.txt\n-->")
    assert metadata["path"] == "dir/a: b.txt"


# 3. Filesystem


def test_write_artifact_creates_parents_and_overwrites(tmp_path):
    artifact = FileArtifact({"path": "nested/dir/file.txt"}, "first")
    path = write_artifact(artifact, tmp_path)

    assert path == tmp_path / "nested" / "dir" / "file.txt"
    assert path.read_text(encoding="utf-8") == "first"

    write_artifact(FileArtifact({"path": "nested/dir/file.txt"}, "second ✓"), tmp_path)
    assert path.read_text(encoding="utf-8") == "second ✓"


def test_write_artifact_keeps_absolute_paths(tmp_path):
    target = tmp_path / "abs.txt"
    path = write_artifact(FileArtifact({"path": str(target)}, "x"), tmp_path / "elsewhere")
    assert path == target
    assert target.exists()


def test_run_command_returns_exit_status(tmp_path):
    assert run_command("true", tmp_path) == 0
    assert run_command("exit 3", tmp_path) == 3


def test_run_command_uses_working_directory(tmp_path):
    assert run_command("touch marker", tmp_path) == 0
    assert (tmp_path / "marker").exists()

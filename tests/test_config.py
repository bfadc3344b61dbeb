"""
Configuration tests.

The config file location is always a temp dir so real settings are never touched.
"""

import json

import pytest

from chatforge.config import Config


def test_config_defaults(tmp_path):
    cfg = Config(str(tmp_path / "settings.json"))

    assert cfg.max_sessions == 100
    assert cfg.auto_save is True
    assert cfg.theme == "Dark"
    assert cfg.model_id == "deepseek-chat"
    assert cfg.api_url.startswith("https://")
    assert cfg.code_theme == "monokai"


def test_load_writes_defaults_when_missing(tmp_path):
    path = tmp_path / "settings.json"
    cfg = Config(str(path))
    cfg.load()

    assert path.exists()
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["max_sessions"] == 100
    # Private attributes never reach the file
    assert "_path" not in document


def test_config_save_load(tmp_path):
    """Verify settings survive a save and load from disk."""
    path = str(tmp_path / "settings.json")

    # 1. Create and Save
    cfg = Config(path)
    cfg.max_sessions = 7
    cfg.auto_save = False
    cfg.set_theme("light")
    cfg.save()

    # 2. Load into new object
    loaded = Config(path)
    loaded.load()

    assert loaded.max_sessions == 7
    assert loaded.auto_save is False
    assert loaded.theme == "Light"
    assert loaded.code_theme == "default"


def test_partial_model_entry_is_merged_with_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"default_model": {"model": "other-model"}}), encoding="utf-8")

    cfg = Config(str(path))
    cfg.load()

    assert cfg.model_id == "other-model"
    assert cfg.api_url == "https://api.deepseek.com/chat/completions"


def test_set_theme_rejects_unknown(tmp_path):
    cfg = Config(str(tmp_path / "settings.json"))
    with pytest.raises(ValueError):
        cfg.set_theme("neon")
    assert cfg.theme == "Dark"


@pytest.mark.parametrize("value", [0, -3])
def test_set_max_sessions_must_be_positive(tmp_path, value):
    cfg = Config(str(tmp_path / "settings.json"))
    with pytest.raises(ValueError):
        cfg.set_max_sessions(value)
    assert cfg.max_sessions == 100

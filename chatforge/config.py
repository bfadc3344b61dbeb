"""Handles all user-facing configuration actions."""

import json
import os

from chatforge.globals import CONFIG_FILE

THEMES = ("Light", "Dark", "System")

# Rich/pygments code theme used for each UI theme
CODE_THEMES = {"Light": "default", "Dark": "monokai", "System": "monokai"}


def default_model() -> dict:
    return {
        "name": "deepseek-chat",
        "description": "v3",
        "provider": "v3",
        "api_key": "",
        "api_url": "https://api.deepseek.com/chat/completions",
        "api_version": "v3",
        "model": "deepseek-chat",
    }


class Config:
    """User-facing configuration variables"""

    def __init__(self, path: str = CONFIG_FILE):
        # Default values
        self.max_sessions: int = 100
        self.auto_save: bool = True
        self.default_model: dict = default_model()
        self.models: list[dict] | None = None
        self.theme: str = "Dark"
        self.system_prompt: str = "You are a helpful assistant."
        # Kept out of __dict__ so it never lands in the config file
        self._path = path

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}

    def save(self):
        """Saves any config changes to the config file."""
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def load(self):
        """Loads the config file, writing defaults first if none exists."""
        if not os.path.exists(self._path):
            self.save()
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, val in data.items():
            if key.startswith("_"):
                continue
            setattr(self, key, val)
        # Older files may carry a partial model entry
        self.default_model = {**default_model(), **(self.default_model or {})}

    @property
    def path(self) -> str:
        return self._path

    def set_theme(self, theme: str):
        """Sets the theme, accepting any casing of Light/Dark/System."""
        match = next((t for t in THEMES if t.lower() == theme.lower()), None)
        if not match:
            raise ValueError(f"Unknown theme '{theme}'. Choose from {', '.join(THEMES)}.")
        self.theme = match

    def set_max_sessions(self, value: int):
        if value <= 0:
            raise ValueError("max_sessions must be a positive number.")
        self.max_sessions = value

    @property
    def code_theme(self) -> str:
        """Returns the rich code theme matching the UI theme"""
        return CODE_THEMES.get(self.theme, "monokai")

    @property
    def api_url(self) -> str:
        """Returns the completion endpoint for use in Chat"""
        return self.default_model["api_url"]

    @property
    def model_id(self) -> str:
        """Returns the model identifier sent with each request"""
        return self.default_model["model"]

    @property
    def model_name(self) -> str:
        """Returns the display name of the default model"""
        return self.default_model.get("name") or self.default_model["model"]

"""Configuration and persisted state for foldertag.

Settings come from, in increasing precedence: built-in defaults, the
persisted state file, a config file in the vault root, environment
variables and finally command-line flags.

Configuration:
    Create a .foldertagrc.json (or .foldertagrc.yaml) file in the vault root:

    {
        "auto_tag_enabled": true,
        "inherit_depth": 3,
        "move_policy": "ask",
        "ignore_paths": ["Templates", ".obsidian"],
        "protected_tags": ["important"],
        "folder_aliases": {"Personal/Dating": ["dating", "relationships"]},
        "folder_mappings": {"Work/Clients": ["client"]}
    }

Environment Variables:
    FOLDERTAG_VAULT            Vault directory
    FOLDERTAG_AUTO_TAG         Set to 'false' to disable tagging new documents
    FOLDERTAG_INHERIT_DEPTH    Folder levels used by the legacy resolver
    FOLDERTAG_IGNORE_PATHS     Comma-separated ignored folders
    FOLDERTAG_PROTECTED_TAGS   Comma-separated protected tags
    FOLDERTAG_MOVE_POLICY      ask, always-retag or always-leave
    FOLDERTAG_VERBOSE          Set to 'true' for verbose output
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TypedDict

import yaml

from foldertag.models import MovePolicy
from foldertag.models import normalize_tag_list
from foldertag.models import Settings
from foldertag.models import VaultState

# Default configuration file names to search for
CONFIG_FILE_NAMES = [
    ".foldertagrc.json",
    ".foldertagrc.yaml",
    ".foldertagrc.yml",
    "foldertag.config.json",
]

# Persisted state, relative to the vault root
STATE_DIR = ".foldertag"
STATE_FILE = "state.json"


class ConfigDict(TypedDict, total=False):
    """Configuration dictionary type."""

    vault: str
    auto_tag_enabled: bool
    inherit_depth: int
    move_policy: str
    ignore_paths: list[str]
    protected_tags: list[str]
    folder_aliases: dict[str, list[str]]
    folder_mappings: dict[str, list[str]]
    verbose: bool


def _read_config(path: Path) -> ConfigDict:
    with open(path, encoding="utf-8") as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def load_config_file(config_path: Path | None = None, root_dir: Path | None = None) -> ConfigDict:
    """Load configuration from file."""
    root_dir = root_dir or Path.cwd()

    # If explicit config path provided, try to load it
    if config_path:
        full_path = root_dir / config_path
        if full_path.exists():
            return _read_config(full_path)
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Try default config file names
    for filename in CONFIG_FILE_NAMES:
        full_path = root_dir / filename
        if full_path.exists():
            return _read_config(full_path)

    return {}


def _split_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_env_config() -> ConfigDict:
    """Load configuration from environment variables."""
    config: ConfigDict = {}

    if os.environ.get("FOLDERTAG_VAULT"):
        config["vault"] = os.environ["FOLDERTAG_VAULT"]
    if os.environ.get("FOLDERTAG_AUTO_TAG"):
        config["auto_tag_enabled"] = os.environ["FOLDERTAG_AUTO_TAG"].lower() != "false"
    if os.environ.get("FOLDERTAG_INHERIT_DEPTH"):
        config["inherit_depth"] = int(os.environ["FOLDERTAG_INHERIT_DEPTH"])
    if os.environ.get("FOLDERTAG_IGNORE_PATHS"):
        config["ignore_paths"] = _split_env_list(os.environ["FOLDERTAG_IGNORE_PATHS"])
    if os.environ.get("FOLDERTAG_PROTECTED_TAGS"):
        config["protected_tags"] = _split_env_list(os.environ["FOLDERTAG_PROTECTED_TAGS"])
    if os.environ.get("FOLDERTAG_MOVE_POLICY"):
        config["move_policy"] = os.environ["FOLDERTAG_MOVE_POLICY"]
    if os.environ.get("FOLDERTAG_VERBOSE") == "true":
        config["verbose"] = True

    return config


def apply_config(settings: Settings, config: ConfigDict) -> Settings:
    """Overlay config values onto settings in place."""
    if "auto_tag_enabled" in config:
        settings.auto_tag_enabled = bool(config["auto_tag_enabled"])
    if "inherit_depth" in config:
        settings.inherit_depth = max(1, int(config["inherit_depth"]))
    if "move_policy" in config:
        settings.move_policy = MovePolicy(config["move_policy"])
    if "ignore_paths" in config:
        settings.ignore_paths = [p.strip().strip("/") for p in config["ignore_paths"] if p.strip().strip("/")]
    if "protected_tags" in config:
        settings.protected_tags = [
            t.strip().lstrip("#").lower() for t in config["protected_tags"] if t.strip().lstrip("#")
        ]
    if "folder_aliases" in config:
        settings.folder_aliases = {
            folder.strip("/"): normalize_tag_list(tags) for folder, tags in config["folder_aliases"].items()
        }
    if "folder_mappings" in config:
        settings.folder_mappings = {
            folder.strip("/"): normalize_tag_list(tags) for folder, tags in config["folder_mappings"].items()
        }
    return settings


class StateStore:
    """Loads and saves the vault state as JSON under the vault root."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir
        self.path = root_dir / STATE_DIR / STATE_FILE

    def load(self) -> VaultState:
        """Load state, falling back to an empty state if none is stored."""
        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            state = VaultState.from_dict(data)
        else:
            state = VaultState()
        state.saver = self.save
        return state

    def save(self, state: VaultState) -> None:
        """Write state to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)

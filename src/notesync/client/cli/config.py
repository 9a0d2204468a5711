"""Configuration utilities for the notesync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

ENV_HOME = "NOTESYNC_HOME"


def get_config_dir() -> Path:
    """Get the configuration directory for notesync.

    Returns:
        ``$NOTESYNC_HOME`` when set, otherwise ~/.notesync.
    """
    override = os.environ.get(ENV_HOME)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".notesync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_notes_dir() -> Path:
    """Get the local notes directory.

    Returns:
        Path to the notes directory (configured or default <config>/notes).
    """
    config = load_config()
    if config.get("notes_dir"):
        return Path(config["notes_dir"]).expanduser().resolve()
    return get_config_dir() / "notes"


def configure_logging(verbose: bool) -> None:
    """Send notesync logs to stderr; DEBUG when verbose, WARNING otherwise."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    notesync_logger = logging.getLogger("notesync")
    notesync_logger.handlers = [handler]
    notesync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    notesync_logger.propagate = False

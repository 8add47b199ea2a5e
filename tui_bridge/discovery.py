"""
Project context auto-discovery for TUI Bridge.

Walks up the directory tree to find:
1. .tui-bridge.yaml (explicit config)
2. .git/ (project root marker, where the walk stops)
"""

from pathlib import Path
from typing import Optional

from .config import Config, load_config

CONFIG_FILENAME = ".tui-bridge.yaml"


def find_config_file(start_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Find .tui-bridge.yaml by walking up directory tree.

    Args:
        start_dir: Directory to start from. Defaults to cwd.

    Returns:
        Path to config file if found, None otherwise.
    """
    start = start_dir or Path.cwd()

    for parent in [start] + list(start.parents):
        config_file = parent / CONFIG_FILENAME
        if config_file.exists():
            return config_file

        # Stop at git root
        if (parent / ".git").exists():
            break

    return None


def discover_project_config(start_dir: Optional[Path] = None) -> Config:
    """
    Auto-discover project context by walking up from start_dir.

    The directory holding the config file (or else the git root) becomes
    project_root. A relative cwd in the config file is resolved against it.

    Args:
        start_dir: Directory to start from. Defaults to cwd.

    Returns:
        Config with discovered values merged over defaults.
    """
    start = start_dir or Path.cwd()

    config_file = find_config_file(start)
    if config_file is not None:
        config = load_config(config_file)
        config.project_root = config_file.parent
        if config.cwd and not Path(config.cwd).is_absolute():
            config.cwd = str(config.project_root / config.cwd)
        return config

    config = Config()
    for parent in [start] + list(start.parents):
        if (parent / ".git").exists():
            config.project_root = parent
            break

    return config

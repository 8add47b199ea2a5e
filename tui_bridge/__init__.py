"""
TUI Bridge - relay an interactive terminal program to websocket clients.

Features:
- Spawns the program on a pseudo-terminal so colors, spinners and line
  editing work as they would in a real terminal
- Strips control sequences and drops UI chrome (spinners, rules, hints)
- Batches output into debounced JSON messages
- Config-driven noise rules per program (profiles)

Usage:
    # Bridge qwen on ws://localhost:3444/
    tui-bridge

    # Any other program, raw output
    tui-bridge --profile generic --mode raw -- htop

    # Generate config template
    tui-bridge --print-config > .tui-bridge.yaml
"""

__version__ = "0.1.0"

from .config import Config, load_config
from .discovery import discover_project_config

__all__ = ["Config", "load_config", "discover_project_config", "__version__"]

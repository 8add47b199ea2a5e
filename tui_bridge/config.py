"""
Configuration system for TUI Bridge.

Supports:
- YAML config files (.tui-bridge.yaml)
- CLI argument overrides
- Sensible defaults (qwen on a 100x30 pty, filtered output)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .process import TRANSPORTS, ProgramSpec
from .profiles import FilterRule, NoiseClassifier, get_profile
from .session import BACKPRESSURE_POLICIES, MODES, SessionSettings


@dataclass
class FilterConfig:
    """Noise filter settings."""
    profile: str = "qwen"
    rules: Optional[List[FilterRule]] = None  # Replaces the profile's rules
    extra_rules: List[FilterRule] = field(default_factory=list)  # Checked first

    def classifier(self) -> NoiseClassifier:
        return get_profile(self.profile).classifier(rules=self.rules, extra_rules=self.extra_rules)


@dataclass
class Config:
    """Configuration for TUI Bridge."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3444

    # Authentication (disabled by default, use --require-token to enable)
    token: Optional[str] = None  # Auto-generated if not set
    no_auth: bool = True

    # Program settings
    command: Optional[str] = None  # Default: the profile's command
    args: List[str] = field(default_factory=list)
    cols: int = 100
    rows: int = 30
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    term: str = "xterm-color"
    transport: str = "pty"  # pty | pipe
    input_terminator: Optional[str] = None  # Default: \r on pty, \n on pipe
    kill_grace: float = 2.0

    # Output settings
    mode: str = "filtered"  # raw | stripped | filtered
    flush_interval: float = 0.15
    max_batch_lines: int = 200
    max_batch_chars: int = 64 * 1024
    max_batch_age: float = 1.0
    max_line_length: int = 64 * 1024
    high_water: int = 64
    backpressure: str = "deliver"  # deliver | pause | coalesce

    # Noise filter
    filter: FilterConfig = field(default_factory=FilterConfig)

    # Project context (set by discovery)
    project_root: Optional[Path] = None

    def validate(self) -> "Config":
        """Raise ConfigError on out-of-range values. Returns self."""
        if self.mode not in MODES:
            raise ConfigError(f"Unknown output mode {self.mode!r} (expected one of {MODES})")
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"Unknown transport {self.transport!r} (expected one of {TRANSPORTS})")
        if self.backpressure not in BACKPRESSURE_POLICIES:
            raise ConfigError(f"Unknown backpressure policy {self.backpressure!r}")
        if not (1 <= self.cols <= 1000 and 1 <= self.rows <= 1000):
            raise ConfigError(f"Terminal size {self.cols}x{self.rows} out of range")
        self.flush_interval = max(0.01, min(2.0, self.flush_interval))
        return self

    def resolved_command(self) -> str:
        return get_profile(self.filter.profile).start_command(self.command)

    def program_spec(self) -> ProgramSpec:
        return ProgramSpec(
            command=self.resolved_command(),
            args=list(self.args),
            cols=self.cols,
            rows=self.rows,
            cwd=self.cwd,
            env=dict(self.env),
            transport=self.transport,
            term=self.term,
        )

    def session_settings(self, mode: Optional[str] = None) -> SessionSettings:
        return SessionSettings(
            mode=mode or self.mode,
            flush_interval=self.flush_interval,
            max_batch_lines=self.max_batch_lines,
            max_batch_chars=self.max_batch_chars,
            max_batch_age=self.max_batch_age,
            max_line_length=self.max_line_length,
            input_terminator=self.input_terminator,
            kill_grace=self.kill_grace,
            high_water=self.high_water,
            backpressure=self.backpressure,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for JSON serialization. The token is never included."""
        data = {
            "host": self.host,
            "port": self.port,
            "no_auth": self.no_auth,
            "command": self.resolved_command(),
            "args": list(self.args),
            "cols": self.cols,
            "rows": self.rows,
            "cwd": self.cwd,
            "env": dict(self.env),
            "term": self.term,
            "transport": self.transport,
            "input_terminator": self.input_terminator,
            "kill_grace": self.kill_grace,
            "mode": self.mode,
            "flush_interval": self.flush_interval,
            "max_batch_lines": self.max_batch_lines,
            "max_batch_chars": self.max_batch_chars,
            "max_batch_age": self.max_batch_age,
            "max_line_length": self.max_line_length,
            "high_water": self.high_water,
            "backpressure": self.backpressure,
            "filter": {
                "profile": self.filter.profile,
                "extra_rules": [r.to_dict() for r in self.filter.extra_rules],
            },
        }
        if self.filter.rules is not None:
            data["filter"]["rules"] = [r.to_dict() for r in self.filter.rules]
        return data

    def to_yaml(self) -> str:
        """Convert config to YAML string."""
        data = self.to_dict()
        return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _parse_rules(entries: Any, key: str) -> List[FilterRule]:
    if not isinstance(entries, list):
        raise ConfigError(f"filter.{key} must be a list")
    return [FilterRule.from_dict(entry) for entry in entries]


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Args:
        path: Path to config file. If None, returns defaults.

    Returns:
        Config instance with loaded values merged over defaults.

    Raises:
        ConfigError: File is not valid YAML or holds invalid values.
    """
    config = Config()

    if path is None or not path.exists():
        return config

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", cause=e)

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    try:
        # Scalars
        for key in ("host", "command", "cwd", "term", "transport", "mode",
                    "backpressure", "input_terminator", "token"):
            if key in data and data[key] is not None:
                setattr(config, key, str(data[key]))
        for key in ("port", "cols", "rows", "max_batch_lines", "max_batch_chars",
                    "max_line_length", "high_water"):
            if key in data:
                setattr(config, key, int(data[key]))
        for key in ("kill_grace", "max_batch_age"):
            if key in data:
                setattr(config, key, float(data[key]))
        if "flush_ms" in data:
            config.flush_interval = int(data["flush_ms"]) / 1000
        if "flush_interval" in data:
            config.flush_interval = float(data["flush_interval"])
        if "no_auth" in data:
            config.no_auth = bool(data["no_auth"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {path}: {e}", cause=e)

    if "args" in data:
        config.args = [str(a) for a in (data["args"] or [])]
    if "env" in data:
        config.env = {str(k): str(v) for k, v in (data["env"] or {}).items()}

    # Noise filter
    filter_data = data.get("filter") or {}
    if not isinstance(filter_data, dict):
        raise ConfigError(f"filter in {path} must be a mapping")
    if "profile" in filter_data:
        config.filter.profile = str(filter_data["profile"])
    if "rules" in filter_data:
        config.filter.rules = _parse_rules(filter_data["rules"], "rules")
    if "extra_rules" in filter_data:
        config.filter.extra_rules = _parse_rules(filter_data["extra_rules"], "extra_rules")

    return config.validate()

"""
Relay configuration management and loading.

Handles the static level table, the default system prompt and the
session cap. Changing any of these requires a redeploy, not a data change.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from chat_relay.core.quota import (
    UNBOUNDED,
    Allowance,
    Bounded,
    LevelConfig,
    LevelTable,
)
from chat_relay.storage.repository import MAX_SESSION_MESSAGES

UNLIMITED = "unlimited"

DEFAULT_SYSTEM_PROMPT = (
    "You are a modern, friendly business assistant. "
    "Answer briefly, clearly and in a modern tone."
)


def _default_levels() -> LevelTable:
    return LevelTable(
        levels={
            "free": LevelConfig(allowance=Bounded(5), model="gpt-4.1-mini"),
            "basic": LevelConfig(allowance=Bounded(100), model="gpt-4.1-mini"),
            "pro": LevelConfig(allowance=Bounded(500), model="gpt-4.1"),
            "premium": LevelConfig(allowance=UNBOUNDED, model="gpt-4.1"),
        },
        default_level="free",
    )


@dataclass(frozen=True)
class RelayConfig:
    """Complete relay configuration."""
    levels: LevelTable = field(default_factory=_default_levels)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_session_messages: int = MAX_SESSION_MESSAGES

    def __post_init__(self):
        """Validate session cap and prompt."""
        if self.max_session_messages <= 0:
            raise ValueError("max_session_messages must be > 0")
        if not self.system_prompt.strip():
            raise ValueError("system_prompt cannot be empty")


def load_relay_config(path: Optional[str] = None) -> RelayConfig:
    """Load and validate relay configuration from a YAML file.

    Strict validation ensures a typo in the level table cannot silently
    hand out the wrong allowance.

    Args:
        path: Path to YAML configuration file. None returns the built-in defaults.

    Returns:
        Validated RelayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return RelayConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Relay config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'levels', 'default_level', 'system_prompt', 'max_session_messages'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    # Parse and validate levels
    if 'levels' not in raw_config:
        raise ValueError("Missing required 'levels' section")

    levels_data = raw_config['levels']
    if not isinstance(levels_data, dict) or not levels_data:
        raise ValueError("'levels' must be a non-empty dictionary")

    levels: Dict[str, LevelConfig] = {}
    for level_name, level_data in levels_data.items():
        if not isinstance(level_data, dict):
            raise ValueError(f"Level '{level_name}' must be a dictionary")
        levels[str(level_name)] = _parse_level_config(level_data, f"levels.{level_name}")

    if 'default_level' not in raw_config:
        raise ValueError("Missing required 'default_level'")
    default_level = raw_config['default_level']
    if default_level not in levels:
        raise ValueError(f"'default_level' must be one of: {sorted(levels)}")

    system_prompt = raw_config.get('system_prompt', DEFAULT_SYSTEM_PROMPT)
    if not isinstance(system_prompt, str) or not system_prompt.strip():
        raise ValueError("'system_prompt' must be a non-empty string")

    max_messages = raw_config.get('max_session_messages', MAX_SESSION_MESSAGES)
    if isinstance(max_messages, bool) or not isinstance(max_messages, int) or max_messages <= 0:
        raise ValueError("'max_session_messages' must be an integer > 0")

    return RelayConfig(
        levels=LevelTable(levels=levels, default_level=default_level),
        system_prompt=system_prompt,
        max_session_messages=max_messages
    )


def _parse_level_config(data: Dict, path: str) -> LevelConfig:
    """Parse and validate a single level entry.

    Args:
        data: Level configuration data
        path: Path for error messages

    Returns:
        Validated LevelConfig

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'daily_requests', 'model'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    if 'daily_requests' not in data:
        raise ValueError(f"Missing required 'daily_requests' in {path}")
    allowance = _parse_allowance(data['daily_requests'], path)

    if 'model' not in data:
        raise ValueError(f"Missing required 'model' in {path}")
    model = data['model']
    if not isinstance(model, str) or not model.strip():
        raise ValueError(f"'model' in {path} must be a non-empty string")

    return LevelConfig(allowance=allowance, model=model)


def _parse_allowance(value, path: str) -> Allowance:
    if isinstance(value, str) and value.lower() == UNLIMITED:
        return UNBOUNDED
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(
            f"'daily_requests' in {path} must be an integer >= 0 or '{UNLIMITED}'"
        )
    return Bounded(value)

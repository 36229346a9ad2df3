"""Configuration management for mailgate."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Rule

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "mailgate"


class MailDBConfig(BaseModel):
    """Mail database (status service) configuration."""

    base_url: str = "http://127.0.0.1:8081/db"
    token: str | None = None  # Bearer token, usually from MAILGATE_MAILDB__TOKEN
    timeout: float = 30.0  # seconds
    retries: int = 3  # connection retries before giving up


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_prefix="MAILGATE_",
        env_nested_delimiter="__",
    )

    # Paths
    config_dir: Path = Field(default_factory=lambda: DEFAULT_CONFIG_DIR)
    rules_path: Path | None = None

    # Mail database
    maildb: MailDBConfig = Field(default_factory=MailDBConfig)
    domain: str | None = None  # Domain messages are recorded under

    # Seconds an action event may wait for its consumer; None waits forever
    send_timeout: float | None = None

    def __init__(self, **data: Any) -> None:
        super().__init__(**data)
        if self.rules_path is None:
            self.rules_path = self.config_dir / "rules.yaml"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Nested dicts are merged recursively. Lists and other values are replaced.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(config_dir: Path | None = None) -> Settings:
    """Load settings from environment and config files.

    Loads config.yaml first, then merges config.local.yaml on top if it
    exists (user-editable overrides).
    """
    config_dir = config_dir or DEFAULT_CONFIG_DIR
    config_file = config_dir / "config.yaml"
    local_config_file = config_dir / "config.local.yaml"

    file_settings: dict[str, Any] = {}

    if config_file.exists():
        with open(config_file) as f:
            file_settings = yaml.safe_load(f) or {}

    if local_config_file.exists():
        with open(local_config_file) as f:
            local_settings = yaml.safe_load(f) or {}
        file_settings = _deep_merge(file_settings, local_settings)

    if "rules_path" in file_settings and isinstance(file_settings["rules_path"], str):
        file_settings["rules_path"] = Path(file_settings["rules_path"]).expanduser()

    file_settings.setdefault("config_dir", config_dir)
    return Settings(**file_settings)


def load_rules(path: Path) -> list[Rule]:
    """Load the ordered rule list from a YAML file.

    The file holds a top-level "rules" list; each entry has an optional id,
    a list of matches (kind/field/value) and a list of actions (kind/targets).
    Scalar values are coerced to strings so numeric ids and timestamps load
    as written.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    rules = []
    for entry in data.get("rules") or []:
        entry = dict(entry)
        if "id" in entry and entry["id"] is not None:
            entry["id"] = str(entry["id"])
        matches = []
        for m in entry.get("matches") or []:
            m = {k: v for k, v in m.items() if v is not None}
            if "value" in m:
                m["value"] = str(m["value"])
            matches.append(m)
        entry["matches"] = matches
        rules.append(Rule.model_validate(entry))
    return rules

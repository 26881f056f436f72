"""lazycurl core - config loading, data paths, variable resolution."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import dotenv_values

from lazycurl.builder import CURL
from lazycurl.errors import PersistenceError


def _default_global_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "lazycurl"


GLOBAL_DIR = _default_global_dir()
CONFIG_FILENAME = "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".lazycurl.yaml",
    ".lazycurl.yml",
    "lazycurl.yaml",
    "lazycurl.yml",
]

DEFAULT_MAX_HISTORY = 100
DEFAULT_TICK_INTERVAL = 1 / 30


@dataclass
class Config:
    curl_path: str = CURL
    data_dir: Path | None = None
    max_history: int = DEFAULT_MAX_HISTORY
    environment: str | None = None
    status_marker: bool = True
    tick_interval: float = DEFAULT_TICK_INTERVAL
    path: Path | None = None


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def global_config_path() -> Path:
    return GLOBAL_DIR / CONFIG_FILENAME


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .lazycurl.yaml (variants) in CWD
      3. <data dir>/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [global_config_path()])


def resolve_value(value, env: dict[str, str] | None = None):
    """Resolve $VAR and ${VAR} references in a string value.

    Looks names up in ``env`` first, then os.environ; unknown references
    are kept as written. Non-strings are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    env = env or {}

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(config_path: str | Path | None) -> Config:
    """Load the YAML config file. A missing file gives the defaults.

    Raises PersistenceError when the file exists but is not valid YAML or
    holds values of the wrong type.
    """
    if config_path is None:
        return Config()
    path = Path(config_path)
    if not path.exists():
        return Config()
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise PersistenceError(path, f"invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceError(path, "config must be a mapping")

    defaults = {k: resolve_value(v) for k, v in (data.get("defaults") or {}).items()}
    config_dir = path.resolve().parent

    data_dir = None
    if defaults.get("data_dir"):
        data_dir = Path(defaults["data_dir"]).expanduser()
        if not data_dir.is_absolute():
            data_dir = config_dir / data_dir

    try:
        return Config(
            curl_path=str(defaults.get("curl_path") or CURL),
            data_dir=data_dir,
            max_history=int(defaults.get("max_history", DEFAULT_MAX_HISTORY)),
            environment=defaults.get("environment") or None,
            status_marker=_as_bool(defaults.get("status_marker", True)),
            tick_interval=float(defaults.get("tick_interval", DEFAULT_TICK_INTERVAL)),
            path=path.resolve(),
        )
    except (TypeError, ValueError) as e:
        raise PersistenceError(path, f"invalid value: {e}") from e


def data_dir(config: Config, cli_override: str | None = None) -> Path:
    """Directory holding templates.json, environments.json and history.json.

    Resolution order:
      1. --data-dir CLI flag (absolute or relative to CWD)
      2. data_dir from config (relative to the config file)
      3. the global data dir
    """
    if cli_override:
        p = Path(cli_override).expanduser()
        return p if p.is_absolute() else Path.cwd() / p
    if config.data_dir:
        return config.data_dir
    return GLOBAL_DIR


def load_env_file(env_file: str | Path) -> dict[str, str]:
    """Read a .env file. Keys without a value are skipped.

    Raises PersistenceError when the file does not exist.
    """
    path = Path(env_file)
    if not path.is_file():
        raise PersistenceError(path, "file not found")
    return {k: v for k, v in dotenv_values(str(path)).items() if v is not None}

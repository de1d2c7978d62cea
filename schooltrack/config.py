"""
config.py

Settings loader for schooltrack.

Features:
- YAML/TOML config files (``load_config``), validated into a ``Settings`` dataclass
- SCHOOLTRACK_* environment overrides applied on top of file values
- Defaults under the platform user-data directory (database + backups)
- Starter template for ``schooltrack init-config``
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging
import os

from platformdirs import user_data_dir

DEFAULT_UPLOAD_URL = (
    "https://www.googleapis.com/upload/drive/v3/files?uploadType=multipart"
)
DEFAULT_UPLOAD_TIMEOUT = 60.0
_APP_NAME = "schooltrack"

ENV_PREFIX = "SCHOOLTRACK_"

# ------------------------------
# Loading utilities (YAML/TOML)
# ------------------------------


def _load_yaml(text: str) -> dict:
    import yaml  # PyYAML

    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML root must be a mapping (dict).")
    return data


def _load_toml(text: str) -> dict:
    import tomllib

    data = tomllib.loads(text)
    if not isinstance(data, dict):
        raise ValueError("TOML root must be a mapping (dict).")
    return data


def _detect_and_load(path: Path) -> dict:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in (".yaml", ".yml"):
        return _load_yaml(text)
    if suffix == ".toml":
        return _load_toml(text)
    raise ValueError(f"Unsupported config file type: {path.suffix or path.name}")


def _expand_path(value: str) -> str:
    """Expand ~ and $ENV in a path-like string, but leave URLs untouched."""
    if isinstance(value, str) and ("://" not in value):
        return os.path.expandvars(os.path.expanduser(value))
    return value


def _default_data_dir() -> Path:
    return Path(user_data_dir(_APP_NAME, _APP_NAME))


def _default_database_url() -> str:
    return f"sqlite:///{_default_data_dir() / 'schooltrack.sqlite'}"


def _default_backup_dir() -> str:
    return str(_default_data_dir() / "backups")


# ---------- Settings root ----------


@dataclass
class Settings:
    database_url: str = field(default_factory=_default_database_url)
    backup_dir: str = field(default_factory=_default_backup_dir)
    upload_url: str = DEFAULT_UPLOAD_URL
    upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT
    log_level: str = "INFO"

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Settings":
        if not isinstance(d, Mapping):
            raise ValueError("Config must be a mapping at the top level.")

        known = {f.name for f in fields(Settings)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        kwargs: Dict[str, Any] = {}
        for key in ("database_url", "backup_dir", "upload_url", "log_level"):
            if key in d:
                value = d[key]
                if not isinstance(value, str) or not value.strip():
                    raise ValueError(f"[{key}] must be a non-empty string.")
                kwargs[key] = value.strip()
        if "backup_dir" in kwargs:
            kwargs["backup_dir"] = _expand_path(kwargs["backup_dir"])
        if "upload_timeout" in d:
            try:
                timeout = float(d["upload_timeout"])
            except (TypeError, ValueError) as e:
                raise ValueError("[upload_timeout] must be a number.") from e
            if timeout <= 0:
                raise ValueError("[upload_timeout] must be positive.")
            kwargs["upload_timeout"] = timeout

        settings = Settings(**kwargs)
        settings.validate()
        return settings

    def validate(self) -> None:
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"[log_level] unknown level {self.log_level!r}")
        self.log_level = self.log_level.upper()

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Return a copy with SCHOOLTRACK_* environment overrides applied."""
        env = os.environ if environ is None else environ
        raw = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in raw:
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value:
                raw[name] = value
        return Settings.from_dict(raw)


def load_config(path: str | Path | None = None) -> Settings:
    """Load settings from ``path`` (YAML or TOML) and the environment.

    Without a path, ``SCHOOLTRACK_CONFIG`` is consulted; with neither, the
    defaults are used.
    """
    if path is None:
        path = os.environ.get(f"{ENV_PREFIX}CONFIG") or None
    if path is None:
        return Settings().with_env()
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    raw = _detect_and_load(p)
    return Settings.from_dict(raw).with_env()


TEMPLATE_YAML = """\
# schooltrack configuration (YAML)
# Any key may be overridden with SCHOOLTRACK_<KEY> environment variables.

# SQLAlchemy URL of the record store
database_url: sqlite:///schooltrack.sqlite

# Directory receiving local backup files
backup_dir: ~/schooltrack-backups

# Multipart upload endpoint for remote backups
upload_url: https://www.googleapis.com/upload/drive/v3/files?uploadType=multipart
upload_timeout: 60

log_level: INFO
"""

"""Settings management for filebridge."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from filebridge.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".filebridge"


@dataclass
class ConnectionDefaults:
    timeout: int = 30
    passive_mode: bool = True  # FTP only
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    host_key_policy: str = "auto_add"  # auto_add, strict

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.backoff_base,
            max_delay=self.backoff_max,
        )


@dataclass
class TransferSettings:
    progress_interval_ms: int = 50
    default_download_dir: str = str(Path.home() / "Downloads")


@dataclass
class AppSettings:
    remember_last_local_folder_on_startup: bool = True
    last_local_folder: str | None = None


@dataclass
class Settings:
    connection: ConnectionDefaults = field(default_factory=ConnectionDefaults)
    transfer: TransferSettings = field(default_factory=TransferSettings)
    app: AppSettings = field(default_factory=AppSettings)


def load_settings(config_dir: Path = DEFAULT_CONFIG_DIR) -> Settings:
    """Load settings from disk, returning defaults if file doesn't exist."""
    settings_path = config_dir / "settings.json"
    if not settings_path.exists():
        return Settings()
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
        return _dict_to_settings(data)
    except Exception as e:
        logger.warning(f"Failed to load settings: {e}")
        return Settings()


def save_settings(settings: Settings, config_dir: Path = DEFAULT_CONFIG_DIR) -> None:
    """Save settings to disk."""
    config_dir.mkdir(parents=True, exist_ok=True)
    settings_path = config_dir / "settings.json"
    data = asdict(settings)
    if not settings.app.remember_last_local_folder_on_startup:
        data["app"]["last_local_folder"] = None
    settings_path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def resolve_startup_local_folder(settings: Settings, fallback: str | None = None) -> str:
    """Return the local folder to use on startup, falling back safely when needed."""
    fallback_path = str(Path.home() if fallback is None else Path(fallback))
    if not settings.app.remember_last_local_folder_on_startup:
        return fallback_path

    saved = settings.app.last_local_folder
    if not saved:
        return fallback_path

    path = Path(saved).expanduser()
    if path.is_dir():
        return str(path.resolve())

    logger.warning("Saved local folder is unavailable: %s", saved)
    settings.app.last_local_folder = None
    return fallback_path


def update_last_local_folder(settings: Settings, path: str) -> bool:
    """Update remembered local folder according to current app settings.

    Returns True if settings were mutated.
    """
    if not settings.app.remember_last_local_folder_on_startup:
        if settings.app.last_local_folder is not None:
            settings.app.last_local_folder = None
            return True
        return False

    resolved = str(Path(path).expanduser().resolve())
    if settings.app.last_local_folder == resolved:
        return False
    settings.app.last_local_folder = resolved
    return True


def _section(cls, data: dict, key: str):
    return cls(**{k: v for k, v in data.get(key, {}).items() if k in cls.__dataclass_fields__})


def _dict_to_settings(data: dict) -> Settings:
    """Convert a dictionary to Settings, filling in defaults for missing keys."""
    return Settings(
        connection=_section(ConnectionDefaults, data, "connection"),
        transfer=_section(TransferSettings, data, "transfer"),
        app=_section(AppSettings, data, "app"),
    )

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

DEFAULT_STORAGE_BACKEND = "S3"
BACKEND_OPTION = "backend"


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_store_config(entries: list[str]) -> dict[str, str]:
    """Turn ``key=value`` entries into an option map."""
    opts: dict[str, str] = {}
    for entry in entries:
        if "=" not in entry:
            raise ValueError(f"store config entry {entry!r} is not of the form key=value")
        key, value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"store config entry {entry!r} has an empty key")
        opts[key] = value.strip()
    return opts


def read_server_config_store(path: Path) -> list[str]:
    """Return the ``StoreConfig`` entries of a server configuration file."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    entries = payload.get("StoreConfig") or []
    if not isinstance(entries, list):
        raise ValueError(f"StoreConfig in {path} must be a list of key=value strings")
    return [str(item) for item in entries]


@dataclass
class Settings:
    STORAGE_BACKEND: str = DEFAULT_STORAGE_BACKEND
    STORAGE_OPTS: dict[str, str] = field(default_factory=dict)
    SERVER_CONFIG: str | None = None
    ENABLE_METRICS: bool = True
    API_KEY_ENABLED: bool = False
    API_KEY: str | None = None
    HOST: str = "0.0.0.0"
    PORT: int = 8443
    TLS_CERT_FILE: str | None = None
    TLS_KEY_FILE: str | None = None
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        if bool(self.TLS_CERT_FILE) != bool(self.TLS_KEY_FILE):
            raise ValueError(
                "TLS_CERT_FILE and TLS_KEY_FILE must be configured together."
            )

    @property
    def tls_enabled(self) -> bool:
        return bool(self.TLS_CERT_FILE and self.TLS_KEY_FILE)

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()

        # 配置文件中的 StoreConfig 先合并，STORE_CONFIG 环境变量优先级更高
        server_config = os.environ.get("SERVER_CONFIG")
        opts: dict[str, str] = {}
        if server_config:
            opts.update(parse_store_config(read_server_config_store(Path(server_config))))
        opts.update(parse_store_config(_as_list(os.environ.get("STORE_CONFIG"))))

        backend = opts.pop(BACKEND_OPTION, None)
        backend = os.environ.get("STORAGE_BACKEND") or backend or cls.STORAGE_BACKEND

        return cls(
            STORAGE_BACKEND=backend,
            STORAGE_OPTS=opts,
            SERVER_CONFIG=server_config,
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            API_KEY_ENABLED=_as_bool(
                os.environ.get("API_KEY_ENABLED"), cls.API_KEY_ENABLED
            ),
            API_KEY=os.environ.get("API_KEY"),
            HOST=os.environ.get("HOST", cls.HOST),
            PORT=int(os.environ.get("PORT", cls.PORT)),
            TLS_CERT_FILE=os.environ.get("TLS_CERT_FILE") or None,
            TLS_KEY_FILE=os.environ.get("TLS_KEY_FILE") or None,
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()

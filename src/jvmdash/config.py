"""Configuration for jvmdash."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from jvmdash.exceptions import ConfigError
from jvmdash.window import DEFAULT_WINDOW_MS

ENV_PREFIX = "JVMDASH_"
THEMES = ("light", "dark")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True, frozen=True)
class DashboardConfig:
    """Runtime settings for the dashboard client."""

    server_url: str = "http://localhost:8080"
    stream_path: str = "/ws/metrics"
    window_ms: int = DEFAULT_WINDOW_MS
    reconnect_delay: float = 3.0  # seconds
    request_timeout: float = 10.0  # seconds
    theme: str = "light"
    log_file: str | None = "jvmdash.log"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        scheme = urlsplit(self.server_url).scheme
        if scheme not in ("http", "https"):
            raise ConfigError(f"server_url must be http(s), got {self.server_url!r}")
        if not self.stream_path.startswith("/"):
            raise ConfigError("stream_path must start with '/'")
        if self.window_ms <= 0:
            raise ConfigError("window_ms must be positive")
        if self.reconnect_delay < 0:
            raise ConfigError("reconnect_delay must not be negative")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.theme not in THEMES:
            raise ConfigError(f"theme must be one of {', '.join(THEMES)}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    @property
    def stream_url(self) -> str:
        """WebSocket URL of the metrics stream on the same server."""
        parts = urlsplit(self.server_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        base = parts.path.rstrip("/")
        return urlunsplit((scheme, parts.netloc, base + self.stream_path, "", ""))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DashboardConfig":
        """Build a config from JVMDASH_* variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is not None:
                values[field.name] = _coerce(field.name, field.type, raw)
        return cls(**values)

    def override(self, **changes: Any) -> "DashboardConfig":
        """Return a copy with every non-None value in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _coerce(name: str, annotation: Any, raw: str) -> Any:
    kind = annotation if isinstance(annotation, type) else str(annotation)
    try:
        if kind is int or kind == "int":
            return int(raw)
        if kind is float or kind == "float":
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()}: {exc}") from exc
    if name == "log_file" and raw.strip().lower() in ("", "-", "none"):
        return None
    return raw

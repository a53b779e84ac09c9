"""
Configuration management for Drive Watch.

Settings come from a JSON file, environment variables, or both
(environment wins):
- BACKEND_URL: public base URL Drive should deliver notifications to
- DRIVEWATCH_TOKEN_PATH: authorized-user token file
- DRIVEWATCH_CLIENT_SECRETS: OAuth client secrets (sign-in only)
"""

import json
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path

from .constants import CHANNEL_TTL_SECONDS

# env var -> (field name, type)
ENV_VARS = {
    "BACKEND_URL": ("backend_url", str),
    "DRIVEWATCH_TOKEN_PATH": ("token_path", str),
    "DRIVEWATCH_CLIENT_SECRETS": ("client_secrets_path", str),
    "DRIVEWATCH_REQUEST_TIMEOUT": ("request_timeout", int),
    "DRIVEWATCH_MAX_WORKERS": ("max_workers", int),
    "DRIVEWATCH_CHANNEL_TTL": ("channel_ttl_seconds", int),
    "DRIVEWATCH_RENEW_MARGIN": ("renew_margin_seconds", int),
    "DRIVEWATCH_RENEW_INTERVAL": ("renew_check_interval_seconds", int),
    "LOG_LEVEL": ("log_level", str),
    "HOST": ("host", str),
    "PORT": ("port", int),
}


@dataclass
class MonitorSettings:
    """Runtime settings for the monitoring service."""
    backend_url: str = ""
    notification_path: str = "/api/monitor/notifications"
    token_path: str = "token.json"
    client_secrets_path: str = "credentials.json"
    request_timeout: int = 30
    max_workers: int = 8
    channel_ttl_seconds: int = CHANNEL_TTL_SECONDS
    renew_margin_seconds: int = 60 * 60
    renew_check_interval_seconds: int = 5 * 60
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def callback_address(self) -> str:
        """Full webhook URL registered with every watch channel."""
        if not self.backend_url:
            raise ValueError("BACKEND_URL is not configured")
        return self.backend_url.rstrip("/") + self.notification_path

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, base: "MonitorSettings" = None) -> "MonitorSettings":
        """Overlay environment variables on top of base (or defaults)."""
        values = base.to_dict() if base else {}
        for var, (name, cast) in ENV_VARS.items():
            raw = os.environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = cast(raw)
            except ValueError:
                raise ValueError(f"{var} must be {cast.__name__}, got {raw!r}")
        return cls.from_dict(values)

    @classmethod
    def load(cls, path: Path) -> "MonitorSettings":
        """Load settings from a JSON file, then apply environment overrides."""
        base = cls()
        if path.exists():
            with open(path) as f:
                base = cls.from_dict(json.load(f))
        return cls.from_env(base)

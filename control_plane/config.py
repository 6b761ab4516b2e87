"""
Configuration management for the Control Plane server.
Loads from environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass

from voice_pipeline.config import _parse_int_env, load_env_files


@dataclass
class ServerConfig:
    """HTTP/WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"  # "json" | "text"

    @property
    def use_json_logs(self) -> bool:
        return self.log_format != "text"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        load_env_files()
        log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
        if log_format not in ("json", "text"):
            raise ValueError(f"LOG_FORMAT must be 'json' or 'text', got {log_format!r}")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_parse_int_env("PORT", default=8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            log_format=log_format,
        )

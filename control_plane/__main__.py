"""
Entry point for running the voice relay server.

Usage:
    python -m control_plane

Serves the control API, the /media WebSocket and synthesized audio on HOST:PORT
(default http://0.0.0.0:8000).
"""
import uvicorn

from logging_setup import setup_logging
from control_plane.config import ServerConfig

if __name__ == "__main__":
    server_config = ServerConfig.from_env()
    setup_logging(level=server_config.log_level, use_json=server_config.use_json_logs)

    uvicorn.run(
        "control_plane.server:app",
        host=server_config.host,
        port=server_config.port,
        log_level=server_config.log_level.lower(),
    )

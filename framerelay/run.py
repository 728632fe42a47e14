"""Programmatic uvicorn entry point for FrameRelay.

Reads host and port from the loaded config (127.0.0.1:3000 by default) and
starts uvicorn with hardened connection defaults:

  --limit-concurrency 100  Max concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Short keep-alive window for idle caller connections

Usage:
    python -m framerelay.run
    framerelay                 # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from framerelay.config import load_config
from framerelay.constants import POOL_MAX_CONNECTIONS

# Matches the upstream pool size so every admitted request can get a connection.
UVICORN_LIMIT_CONCURRENCY: int = POOL_MAX_CONNECTIONS

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the FrameRelay server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "framerelay.main:app",
        host=config.proxy.host,
        port=config.proxy.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()

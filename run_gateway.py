# File: run_gateway.py
# Project: Playlist Chat Gateway
# Description: Uvicorn entrypoint that loads settings from the environment and serves the websocket gateway.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import sys

import structlog
import uvicorn

from playlist_chat.core.config import LOG_DIR
from playlist_chat.core.errors import ConfigurationError
from playlist_chat.core.logging import setup_logging
from playlist_chat.core.settings import GatewaySettings
from playlist_chat.main import create_app

logger = structlog.get_logger('run_gateway')


def main() -> int:
    try:
        settings = GatewaySettings.from_env()
    except ConfigurationError as exc:
        setup_logging()
        logger.error('gateway.config_invalid', error=str(exc))
        return 1
    setup_logging(settings.logLevel, LOG_DIR)

    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        ws_per_message_deflate=settings.perMessageDeflate,
        reload=False,
        access_log=False,
        log_config=None,
    )
    server = uvicorn.Server(config)
    server.run()
    if not server.started:
        logger.error('gateway.startup_failed', host=settings.host, port=settings.port)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

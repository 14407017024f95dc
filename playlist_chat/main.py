# File: playlist_chat/main.py
# Project: Playlist Chat Gateway
# Description: FastAPI application factory wiring settings, catalogue, LLM service and session manager into app state.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import structlog

from .api.routes_chat import router as chat_router
from .api.routes_health import router as health_router
from .core.settings import GatewaySettings
from .services.catalogue import CatalogueReader, CatalogueStore, build_catalogue_store
from .services.chat_session import ChatSessionManager
from .services.llm import LLMService
from .version import GATEWAY_VERSION

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings: GatewaySettings = app.state.settings
    logger.info(
        'gateway.startup',
        version=GATEWAY_VERSION,
        catalogue=settings.catalogue.backend,
        model=settings.llm.defaultModel,
    )
    try:
        yield
    finally:
        manager: ChatSessionManager = app.state.chat_manager
        logger.info('gateway.shutdown', **manager.stats())
        await app.state.llm_service.aclose()


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    catalogue_store: Optional[CatalogueStore] = None,
    llm_service: Optional[LLMService] = None,
) -> FastAPI:
    """Build the gateway app; stores and services may be injected for tests."""
    settings = settings or GatewaySettings.from_env()
    store = catalogue_store or build_catalogue_store(settings.catalogue)
    catalogue = CatalogueReader(store, max_videos=settings.catalogue.maxVideos)
    llm = llm_service or LLMService(settings.llm)
    chat_manager = ChatSessionManager(
        catalogue,
        llm,
        default_model_id=settings.llm.defaultModel,
        turn_timeout_seconds=settings.turnTimeoutSeconds,
    )

    app = FastAPI(title='Playlist Chat Gateway', version=GATEWAY_VERSION, lifespan=_lifespan)
    app.state.settings = settings
    app.state.llm_service = llm
    app.state.chat_manager = chat_manager

    app.include_router(health_router)
    app.include_router(chat_router)
    return app

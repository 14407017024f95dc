# File: playlist_chat/core/deps.py
# Project: Playlist Chat Gateway
# Description: FastAPI dependency providers exposing shared services from application state.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from fastapi import Request, WebSocket

from ..services.chat_session import ChatSessionManager
from .settings import GatewaySettings


def get_settings_ws(websocket: WebSocket) -> GatewaySettings:
    return websocket.app.state.settings


def get_chat_manager(request: Request) -> ChatSessionManager:
    return request.app.state.chat_manager


def get_chat_manager_ws(websocket: WebSocket) -> ChatSessionManager:
    return websocket.app.state.chat_manager

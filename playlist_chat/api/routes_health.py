# File: playlist_chat/api/routes_health.py
# Project: Playlist Chat Gateway
# Description: Liveness text at the root path and a health endpoint exposing status, version and session stats.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from ..core.deps import get_chat_manager
from ..services.chat_session import ChatSessionManager
from ..version import GATEWAY_VERSION

router = APIRouter(tags=['health'])

LIVENESS_TEXT = 'Playlist Chat Gateway is running.'


@router.get('/', response_class=PlainTextResponse, summary='Liveness probe')
async def liveness():
    return LIVENESS_TEXT


@router.get('/health', summary='Health check')
async def health_check(chat_manager: ChatSessionManager = Depends(get_chat_manager)):
    return {'status': 'ok', 'version': GATEWAY_VERSION, 'sessions': chat_manager.stats()}

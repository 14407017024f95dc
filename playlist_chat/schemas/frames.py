# File: playlist_chat/schemas/frames.py
# Project: Playlist Chat Gateway
# Description: Websocket envelope models for client commands and server events exchanged with the browser.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.errors import BadFrameError, GatewayError


class ClientMessageType(str, Enum):
    INIT_CHAT = 'INIT_CHAT'
    USER_QUERY = 'USER_QUERY'
    PING = 'PING'


class ServerMessageType(str, Enum):
    CHAT_INITIALIZED = 'CHAT_INITIALIZED'
    STREAM_CHUNK = 'STREAM_CHUNK'
    STREAM_END = 'STREAM_END'
    PONG = 'PONG'
    ERROR = 'ERROR'


class ClientFrame(BaseModel):
    type: ClientMessageType
    payload: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra='ignore')


class InitChatPayload(BaseModel):
    playlistId: str = Field(min_length=1)
    modelId: Optional[str] = None


class UserQueryPayload(BaseModel):
    query: str = Field(min_length=1)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'invalid value'
    first = errors[0]
    location = '.'.join(str(part) for part in first.get('loc', ()))
    message = first.get('msg', 'invalid value')
    return f'{location}: {message}' if location else message


def parse_client_frame(text: str | bytes) -> ClientFrame:
    """Decode one inbound text frame into a typed envelope or raise BAD_FRAME."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise BadFrameError('Invalid message format') from exc
    if not isinstance(data, dict):
        raise BadFrameError('Invalid message format')
    message_type = data.get('type')
    if not isinstance(message_type, str) or not message_type:
        raise BadFrameError('Message type is required')
    if message_type not in ClientMessageType.__members__:
        raise BadFrameError(f'Unknown message type: {message_type}')
    try:
        return ClientFrame.model_validate(data)
    except ValidationError as exc:
        raise BadFrameError(f'Invalid {message_type} frame ({_first_error(exc)})') from exc


def parse_init_payload(frame: ClientFrame) -> InitChatPayload:
    try:
        return InitChatPayload.model_validate(frame.payload or {})
    except ValidationError as exc:
        raise BadFrameError('playlistId is required for INIT_CHAT') from exc


def parse_query_payload(frame: ClientFrame) -> UserQueryPayload:
    try:
        return UserQueryPayload.model_validate(frame.payload or {})
    except ValidationError as exc:
        raise BadFrameError('Query is required for USER_QUERY') from exc


class ServerFrame(BaseModel):
    type: ServerMessageType
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        # Only the envelope keys that carry data are emitted; payload content is passed through as-is.
        frame: Dict[str, Any] = {'type': self.type.value}
        if self.payload is not None:
            frame['payload'] = self.payload
        if self.error is not None:
            frame['error'] = self.error
        if self.code is not None:
            frame['code'] = self.code
        return frame

    @classmethod
    def chat_initialized(cls, playlist_id: str, model_id: str) -> 'ServerFrame':
        return cls(
            type=ServerMessageType.CHAT_INITIALIZED,
            payload={'playlistId': playlist_id, 'modelId': model_id},
        )

    @classmethod
    def stream_chunk(cls, text_chunk: str) -> 'ServerFrame':
        return cls(type=ServerMessageType.STREAM_CHUNK, payload={'textChunk': text_chunk})

    @classmethod
    def stream_end(cls, answer: str, suggested_videos: List[Dict[str, Any]]) -> 'ServerFrame':
        return cls(
            type=ServerMessageType.STREAM_END,
            payload={'answer': answer, 'suggestedVideos': suggested_videos},
        )

    @classmethod
    def pong(cls) -> 'ServerFrame':
        return cls(type=ServerMessageType.PONG)

    @classmethod
    def from_error(cls, exc: GatewayError) -> 'ServerFrame':
        return cls(type=ServerMessageType.ERROR, error=exc.message, code=exc.code.value)

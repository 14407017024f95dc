# File: playlist_chat/core/errors.py
# Project: Playlist Chat Gateway
# Description: Error codes surfaced to websocket clients and the exception hierarchy that carries them.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import uuid
from enum import Enum


class ErrorCode(str, Enum):
    BAD_FRAME = 'BAD_FRAME'
    NOT_READY = 'NOT_READY'
    BUSY = 'BUSY'
    CATALOGUE_UNAVAILABLE = 'CATALOGUE_UNAVAILABLE'
    PLAYLIST_EMPTY = 'PLAYLIST_EMPTY'
    LLM_UNAVAILABLE = 'LLM_UNAVAILABLE'
    LLM_REFUSED = 'LLM_REFUSED'
    LLM_PROTOCOL = 'LLM_PROTOCOL'
    TIMEOUT = 'TIMEOUT'
    INTERNAL = 'INTERNAL'


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid."""


class GatewayError(RuntimeError):
    """Base error that maps onto an ERROR frame sent to the client."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        # Whether the session may keep its chat handle after this error.
        self.recoverable = recoverable


class BadFrameError(GatewayError):
    code = ErrorCode.BAD_FRAME


class NotReadyError(GatewayError):
    code = ErrorCode.NOT_READY


class BusyError(GatewayError):
    code = ErrorCode.BUSY


class CatalogueUnavailableError(GatewayError):
    code = ErrorCode.CATALOGUE_UNAVAILABLE


class PlaylistEmptyError(GatewayError):
    code = ErrorCode.PLAYLIST_EMPTY


class LLMUnavailableError(GatewayError):
    """Transport, quota or credential failure talking to the LLM provider."""
    code = ErrorCode.LLM_UNAVAILABLE


class LLMRefusedError(GatewayError):
    """Provider stopped generation because of a safety or policy decision."""
    code = ErrorCode.LLM_REFUSED


class LLMProtocolError(GatewayError):
    """Provider returned a payload the adapter could not interpret."""
    code = ErrorCode.LLM_PROTOCOL


class TurnTimeoutError(GatewayError):
    code = ErrorCode.TIMEOUT


class InternalError(GatewayError):
    code = ErrorCode.INTERNAL

    def __init__(self, reference: str | None = None) -> None:
        self.reference = reference or uuid.uuid4().hex[:8]
        super().__init__(f'Internal server error (ref {self.reference})', recoverable=True)

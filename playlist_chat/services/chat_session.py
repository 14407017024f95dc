# File: playlist_chat/services/chat_session.py
# Project: Playlist Chat Gateway
# Description: Per-connection chat session state machine that owns the catalogue snapshot and chat handle,
# runs streamed turns under a wall-clock cap and turns the final reply into enriched suggestions.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import asyncio
import time
import uuid
from collections import Counter
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Optional, Tuple

import structlog

from ..core.errors import (
    BusyError,
    ErrorCode,
    GatewayError,
    InternalError,
    NotReadyError,
    TurnTimeoutError,
)
from ..schemas.frames import ServerFrame
from ..schemas.video import Video
from .catalogue import CatalogueReader, catalogue_context
from .llm import SYSTEM_PREAMBLE, ChatHandle, LLMService
from .suggestion_parser import extract_suggestions
from .suggestion_resolver import resolve

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    IDLE = 'IDLE'
    INITIALIZING = 'INITIALIZING'
    READY = 'READY'
    STREAMING = 'STREAMING'
    FAILED = 'FAILED'
    CLOSED = 'CLOSED'


@dataclass
class ChatSession:
    session_id: str
    state: SessionState = SessionState.IDLE
    playlist_id: Optional[str] = None
    model_id: Optional[str] = None
    videos: Tuple[Video, ...] = ()
    chat_handle: Optional[ChatHandle] = None
    created_at: float = field(default_factory=time.monotonic)
    last_activity_at: float = field(default_factory=time.monotonic)
    turn_count: int = 0

    def touch(self) -> None:
        self.last_activity_at = time.monotonic()


@dataclass
class SessionStats:
    sessions_opened: int = 0
    sessions_closed: int = 0
    turns_started: int = 0
    turns_completed: int = 0
    errors: Counter = field(default_factory=Counter)

    def to_dict(self, active: int) -> Dict[str, Any]:
        return {
            'activeSessions': active,
            'sessionsOpened': self.sessions_opened,
            'sessionsClosed': self.sessions_closed,
            'turnsStarted': self.turns_started,
            'turnsCompleted': self.turns_completed,
            'errors': dict(self.errors),
        }


class ChatSessionManager:
    def __init__(
        self,
        catalogue: CatalogueReader,
        llm_service: LLMService,
        *,
        default_model_id: Optional[str] = None,
        turn_timeout_seconds: float = 120.0,
    ) -> None:
        # Sessions live exactly as long as their socket; nothing here survives a reconnect.
        self._catalogue = catalogue
        self._llm = llm_service
        self._default_model_id = default_model_id or llm_service.default_model
        self._turn_timeout = turn_timeout_seconds
        self._sessions: Dict[str, ChatSession] = {}
        self._stats = SessionStats()

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def stats(self) -> Dict[str, Any]:
        return self._stats.to_dict(self.active_count)

    def record_error(self, code: ErrorCode) -> None:
        self._stats.errors[code.value] += 1

    def _rejected(self, exc: GatewayError) -> GatewayError:
        self.record_error(exc.code)
        return exc

    def open_session(self) -> ChatSession:
        session = ChatSession(session_id=uuid.uuid4().hex)
        self._sessions[session.session_id] = session
        self._stats.sessions_opened += 1
        logger.info('chat.session_opened', session_id=session.session_id)
        return session

    def close_session(self, session: ChatSession) -> None:
        if session.state is SessionState.CLOSED:
            return
        session.state = SessionState.CLOSED
        self._release_handle(session)
        self._sessions.pop(session.session_id, None)
        self._stats.sessions_closed += 1
        logger.info('chat.session_closed', session_id=session.session_id, turns=session.turn_count)

    def _release_handle(self, session: ChatSession) -> None:
        if session.chat_handle is not None:
            self._llm.release(session.chat_handle)
            session.chat_handle = None

    def _mark_failed(self, session: ChatSession) -> None:
        self._release_handle(session)
        session.playlist_id = None
        session.videos = ()
        session.state = SessionState.FAILED

    async def init_chat(self, session: ChatSession, playlist_id: str, model_id: Optional[str] = None) -> ServerFrame:
        """(Re)initialise the session for a playlist; any previous chat handle is released first."""
        if session.state is SessionState.CLOSED:
            raise self._rejected(NotReadyError('Session is closed'))
        if session.state in (SessionState.STREAMING, SessionState.INITIALIZING):
            raise self._rejected(BusyError('Cannot re-initialize while a request is in progress'))
        effective_model = model_id or self._default_model_id
        self._release_handle(session)
        session.state = SessionState.INITIALIZING
        session.playlist_id = None
        session.videos = ()
        logger.info('chat.init.start', session_id=session.session_id, playlist_id=playlist_id, model=effective_model)
        try:
            videos = await self._catalogue.fetch_playlist_videos(playlist_id)
            handle = await self._llm.start_chat(effective_model, SYSTEM_PREAMBLE, catalogue_context(videos))
        except GatewayError as exc:
            logger.warning('chat.init.failed', session_id=session.session_id, code=exc.code.value, error=exc.message)
            self.record_error(exc.code)
            if session.state is SessionState.INITIALIZING:
                self._mark_failed(session)
            raise
        except Exception as exc:
            internal = InternalError()
            logger.exception('chat.init.crashed', session_id=session.session_id, ref=internal.reference)
            self.record_error(internal.code)
            if session.state is SessionState.INITIALIZING:
                self._mark_failed(session)
            raise internal from exc

        if session.state is not SessionState.INITIALIZING:
            # The socket went away while we were waiting on the catalogue or provider.
            self._llm.release(handle)
            raise NotReadyError('Session is closed')
        session.playlist_id = playlist_id
        session.model_id = effective_model
        session.videos = videos
        session.chat_handle = handle
        session.state = SessionState.READY
        logger.info('chat.init.done', session_id=session.session_id, playlist_id=playlist_id, videos=len(videos))
        return ServerFrame.chat_initialized(playlist_id, effective_model)

    def begin_turn(self, session: ChatSession) -> None:
        """Claim the session for one streamed turn or raise BUSY / NOT_READY."""
        if session.state is SessionState.STREAMING:
            raise self._rejected(BusyError('A response is already streaming for this session'))
        if session.state is not SessionState.READY or session.chat_handle is None:
            raise self._rejected(NotReadyError('Chat not initialized. Send INIT_CHAT first.'))
        session.state = SessionState.STREAMING
        session.turn_count += 1
        self._stats.turns_started += 1

    async def _stream_with_deadline(self, handle: ChatHandle, query: str) -> AsyncGenerator[str, None]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._turn_timeout
        fragments = self._llm.stream(handle, query)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TurnTimeoutError(f'No complete response within {self._turn_timeout:g} seconds')
                try:
                    fragment = await asyncio.wait_for(fragments.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise TurnTimeoutError(f'No complete response within {self._turn_timeout:g} seconds') from None
                yield fragment
        finally:
            await fragments.aclose()

    async def stream_turn(self, session: ChatSession, query: str) -> AsyncGenerator[ServerFrame, None]:
        """Yield STREAM_CHUNK frames followed by exactly one STREAM_END or ERROR; requires begin_turn()."""
        handle = session.chat_handle
        videos = session.videos
        next_state = SessionState.READY
        chunks = []
        started = time.monotonic()
        logger.info('chat.turn.start', session_id=session.session_id, playlist_id=session.playlist_id, query=query[:120])
        try:
            try:
                if handle is None:
                    raise NotReadyError('Chat not initialized. Send INIT_CHAT first.')
                async with aclosing(self._stream_with_deadline(handle, query)) as fragments:
                    async for text in fragments:
                        if not chunks:
                            logger.info(
                                'chat.turn.first_chunk',
                                session_id=session.session_id,
                                latency=round(time.monotonic() - started, 3),
                            )
                        chunks.append(text)
                        yield ServerFrame.stream_chunk(text)
                raw_text = ''.join(chunks)
                resolution = resolve(extract_suggestions(raw_text), videos, raw_text)
                final = ServerFrame.stream_end(resolution.answer, resolution.suggested_videos)
                self._stats.turns_completed += 1
                logger.info(
                    'chat.turn.done',
                    session_id=session.session_id,
                    chars=len(raw_text),
                    suggestions=len(resolution.suggested_videos),
                    elapsed=round(time.monotonic() - started, 3),
                )
            except GatewayError as exc:
                logger.warning(
                    'chat.turn.failed',
                    session_id=session.session_id,
                    code=exc.code.value,
                    recoverable=exc.recoverable,
                    error=exc.message,
                )
                self.record_error(exc.code)
                if not exc.recoverable:
                    next_state = SessionState.FAILED
                final = ServerFrame.from_error(exc)
            except Exception:
                internal = InternalError()
                logger.exception('chat.turn.crashed', session_id=session.session_id, ref=internal.reference)
                self.record_error(internal.code)
                final = ServerFrame.from_error(internal)
            yield final
        finally:
            # Runs on completion, failure and cancellation; a closed session stays closed.
            if session.state is SessionState.STREAMING:
                if next_state is SessionState.FAILED:
                    self._mark_failed(session)
                else:
                    session.state = SessionState.READY

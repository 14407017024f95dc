# File: playlist_chat/api/routes_chat.py
# Project: Playlist Chat Gateway
# Description: Websocket endpoint that dispatches INIT_CHAT, USER_QUERY and PING frames for one chat session
# and writes server frames through a single ordered outbound queue.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import asyncio
from contextlib import aclosing, suppress
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
import structlog

from ..core.deps import get_chat_manager_ws, get_settings_ws
from ..core.errors import GatewayError, InternalError
from ..core.settings import GatewaySettings
from ..schemas.frames import (
    ClientFrame,
    ClientMessageType,
    ServerFrame,
    parse_client_frame,
    parse_init_payload,
    parse_query_payload,
)
from ..services.chat_session import ChatSession, ChatSessionManager

router = APIRouter(tags=['chat'])
logger = structlog.get_logger(__name__)

IDLE_CLOSE_CODE = 4408
# Bounded so a slow client pauses the upstream stream instead of buffering it.
OUTBOX_SIZE = 64


class ChatConnection:
    """One socket: a reader loop, a single writer task and at most one streaming turn."""

    def __init__(
        self,
        websocket: WebSocket,
        chat_manager: ChatSessionManager,
        *,
        idle_timeout: float = 0.0,
    ) -> None:
        self._websocket = websocket
        self._manager = chat_manager
        self._idle_timeout = idle_timeout if idle_timeout > 0 else None
        self._outbox: asyncio.Queue[Optional[ServerFrame]] = asyncio.Queue(maxsize=OUTBOX_SIZE)
        self._writer: Optional[asyncio.Task] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._session: Optional[ChatSession] = None

    def _turn_running(self) -> bool:
        return self._turn_task is not None and not self._turn_task.done()

    async def run(self) -> None:
        self._session = self._manager.open_session()
        self._writer = asyncio.create_task(self._write_loop())
        idle_closed = False
        try:
            idle_closed = await self._read_loop()
        finally:
            await self._cancel_turn()
            self._manager.close_session(self._session)
            if idle_closed:
                await self._drain_and_close(IDLE_CLOSE_CODE)
            else:
                await self._stop_writer()

    async def _read_loop(self) -> bool:
        """Return True when the socket should be closed for inactivity."""
        while True:
            try:
                message = await asyncio.wait_for(self._websocket.receive(), timeout=self._idle_timeout)
            except asyncio.TimeoutError:
                if self._turn_running():
                    continue
                logger.info('chat.socket.idle_timeout', session_id=self._session.session_id, idle=self._idle_timeout)
                return True
            except WebSocketDisconnect:
                return False
            if message.get('type') == 'websocket.disconnect':
                logger.info('chat.socket.disconnected', session_id=self._session.session_id, code=message.get('code'))
                return False
            raw = message.get('text')
            if raw is None:
                raw = message.get('bytes')
            await self._dispatch(raw)

    async def _dispatch(self, raw) -> None:
        session = self._session
        try:
            frame = self._checked(parse_client_frame, raw if raw is not None else '')
            session.touch()
            await self._handle(frame)
        except GatewayError as exc:
            await self._send(ServerFrame.from_error(exc))
        except Exception:
            internal = InternalError()
            logger.exception('chat.dispatch.crashed', session_id=session.session_id, ref=internal.reference)
            self._manager.record_error(internal.code)
            await self._send(ServerFrame.from_error(internal))

    async def _handle(self, frame: ClientFrame) -> None:
        session = self._session
        if frame.type is ClientMessageType.PING:
            await self._send(ServerFrame.pong())
            return
        if frame.type is ClientMessageType.INIT_CHAT:
            payload = self._checked(parse_init_payload, frame)
            # Initialisation is awaited inline so queued frames see its outcome in order.
            reply = await self._manager.init_chat(session, payload.playlistId, payload.modelId)
            await self._send(reply)
            return
        payload = self._checked(parse_query_payload, frame)
        self._manager.begin_turn(session)
        self._turn_task = asyncio.create_task(self._run_turn(payload.query))

    def _checked(self, parser, value):
        try:
            return parser(value)
        except GatewayError as exc:
            self._manager.record_error(exc.code)
            raise

    async def _run_turn(self, query: str) -> None:
        async with aclosing(self._manager.stream_turn(self._session, query)) as frames:
            async for frame in frames:
                await self._send(frame)

    async def _send(self, frame: ServerFrame) -> None:
        if self._writer is None or self._writer.done():
            return
        await self._outbox.put(frame)

    async def _write_loop(self) -> None:
        send_failed = False
        while True:
            frame = await self._outbox.get()
            if frame is None:
                return
            # Keep consuming after a transport fault so producers never block on a full outbox.
            if send_failed or self._websocket.client_state != WebSocketState.CONNECTED:
                continue
            try:
                await self._websocket.send_json(frame.to_wire())
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.info('chat.socket.send_failed', session_id=self._session.session_id, error=str(exc))
                send_failed = True

    async def _cancel_turn(self) -> None:
        task = self._turn_task
        self._turn_task = None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info('chat.turn.cancelled', session_id=self._session.session_id)

    async def _stop_writer(self) -> None:
        if self._writer is None:
            return
        self._writer.cancel()
        with suppress(asyncio.CancelledError):
            await self._writer

    async def _drain_and_close(self, code: int) -> None:
        if self._writer is not None and not self._writer.done():
            await self._outbox.put(None)
            with suppress(asyncio.CancelledError):
                await self._writer
        if self._websocket.client_state == WebSocketState.CONNECTED:
            with suppress(RuntimeError, OSError):
                await self._websocket.close(code=code)


@router.websocket('/ws')
@router.websocket('/')
async def chat_socket(
    websocket: WebSocket,
    chat_manager: ChatSessionManager = Depends(get_chat_manager_ws),
    settings: GatewaySettings = Depends(get_settings_ws),
):
    await websocket.accept()
    connection = ChatConnection(websocket, chat_manager, idle_timeout=settings.idleTimeoutSeconds)
    logger.info('chat websocket connected', client=str(websocket.client))
    await connection.run()

# File: playlist_chat/services/llm.py
# Project: Playlist Chat Gateway
# Description: LLMService that opens catalogue-primed chat sessions on an OpenAI-compatible provider
# and streams replies while mapping provider failures onto gateway error codes.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import inspect
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import httpx
import openai
import structlog
from openai import AsyncOpenAI

from ..core.errors import GatewayError, LLMProtocolError, LLMRefusedError, LLMUnavailableError
from ..core.settings import LLMProfile

logger = structlog.get_logger(__name__)

SYSTEM_PREAMBLE = (
    "You are an AI assistant. I will provide a 'Video List'. Your task is to recommend videos from this "
    "list that best match the 'User Query'. Your response MUST be a valid JSON object with a single key: "
    "'suggestedVideos'. The value of 'suggestedVideos' MUST be an array. Each object in the array MUST "
    "have two keys: 'videoId' and 'reason'. If NO videos match, 'suggestedVideos' MUST be an empty array. "
    "Output ONLY the JSON object."
)
MODEL_ACKNOWLEDGEMENT = (
    'Understood. I will use the provided video list and user query to make recommendations '
    'in the specified JSON format.'
)
CATALOGUE_PREFIX = 'Video List (JSON format):\n'

# The corpus is the user's own playlist, so provider-side filtering is switched off.
SAFETY_CATEGORIES = (
    'HARM_CATEGORY_HARASSMENT',
    'HARM_CATEGORY_HATE_SPEECH',
    'HARM_CATEGORY_SEXUALLY_EXPLICIT',
    'HARM_CATEGORY_DANGEROUS_CONTENT',
)
REFUSAL_FINISH_REASONS = {'content_filter', 'safety', 'prohibited_content', 'blocklist'}


def safety_settings() -> List[Dict[str, str]]:
    return [{'category': category, 'threshold': 'BLOCK_NONE'} for category in SAFETY_CATEGORIES]


@dataclass
class ChatHandle:
    """Opaque per-session chat state: model id plus the turns sent with every request."""
    handle_id: str
    model_id: str
    history: List[Dict[str, str]] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    released: bool = False


class LLMService:
    def __init__(self, profile: LLMProfile, client: Optional[AsyncOpenAI] = None) -> None:
        # One provider client per process; sessions only own their ChatHandle.
        self._profile = profile
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def default_model(self) -> str:
        return self._profile.defaultModel

    def _get_client(self) -> AsyncOpenAI:
        with self._client_lock:
            if self._client is None:
                if not self._profile.apiKey:
                    raise LLMUnavailableError('LLM API key is not configured', recoverable=False)
                base_url = (self._profile.baseUrl or '').strip()
                client_kwargs: Dict[str, Any] = {'api_key': self._profile.apiKey}
                if base_url:
                    client_kwargs['base_url'] = base_url
                self._client = AsyncOpenAI(**client_kwargs)
            return self._client

    async def start_chat(self, model_id: str, system_preamble: str, catalogue_json: str) -> ChatHandle:
        """Create a chat handle whose history primes the model with the response contract and catalogue."""
        # Building the client here surfaces configuration problems during INIT rather than the first query.
        self._get_client()
        history = [
            {'role': 'user', 'content': system_preamble},
            {'role': 'assistant', 'content': MODEL_ACKNOWLEDGEMENT},
            {'role': 'user', 'content': f'{CATALOGUE_PREFIX}{catalogue_json}'},
        ]
        handle = ChatHandle(handle_id=uuid.uuid4().hex, model_id=model_id, history=history)
        logger.info('llm.chat_started', handle_id=handle.handle_id, model=model_id, primer_chars=len(catalogue_json))
        return handle

    def release(self, handle: Optional[ChatHandle]) -> None:
        if handle is None or handle.released:
            return
        handle.released = True
        handle.history.clear()
        logger.debug('llm.chat_released', handle_id=handle.handle_id)

    async def aclose(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            await client.close()
            logger.info('llm.client_closed')

    def _build_request(self, handle: ChatHandle, user_text: str) -> Tuple[Dict[str, Any], float]:
        request_body: Dict[str, Any] = {
            'model': handle.model_id,
            'messages': [*handle.history, {'role': 'user', 'content': user_text}],
            'temperature': 0,
            'response_format': {'type': 'json_object'},
            # Provider-specific options travel through the compatibility layer untouched.
            'extra_body': {'extra_body': {'google': {'safety_settings': safety_settings()}}},
        }
        timeout = max(self._profile.timeoutMs / 1000, 1.0)
        return request_body, timeout

    async def stream(self, handle: ChatHandle, user_text: str) -> AsyncGenerator[str, None]:
        """Yield reply fragments in order; history grows only when the reply completes."""
        if handle.released:
            raise LLMUnavailableError('Chat session is no longer available', recoverable=False)
        request_body, timeout = self._build_request(handle, user_text)
        client = self._get_client()
        try:
            stream = await client.chat.completions.create(**request_body, stream=True, timeout=timeout)
        except openai.OpenAIError as exc:
            raise self._map_error(exc) from exc
        except httpx.HTTPError as exc:
            raise LLMUnavailableError(f'LLM transport error: {exc}') from exc

        parts: List[str] = []
        try:
            async for chunk in stream:
                text, finish_reason, refusal = self._parse_chunk(chunk)
                if refusal:
                    raise LLMRefusedError(f'Model refused the request: {refusal}')
                if finish_reason and finish_reason.lower() in REFUSAL_FINISH_REASONS:
                    raise LLMRefusedError(f'Model stopped with finish reason {finish_reason}')
                if text:
                    parts.append(text)
                    yield text
        except openai.OpenAIError as exc:
            raise self._map_error(exc) from exc
        except httpx.HTTPError as exc:
            raise LLMUnavailableError(f'LLM transport error: {exc}') from exc
        finally:
            await self._close_stream(stream)

        if not handle.released:
            handle.history.append({'role': 'user', 'content': user_text})
            handle.history.append({'role': 'assistant', 'content': ''.join(parts)})

    async def _close_stream(self, stream: Any) -> None:
        close = getattr(stream, 'close', None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # pragma: no cover - best effort cleanup of the HTTP response
            logger.debug('llm.stream_close_failed', error=str(exc))

    def _convert_chunk(self, chunk: Any) -> Dict[str, Any]:
        # openai SDK objects and plain dicts are normalised to the same structure.
        if hasattr(chunk, 'model_dump'):
            return chunk.model_dump()
        if isinstance(chunk, dict):
            return chunk
        raise LLMProtocolError(f'Unexpected stream payload of type {type(chunk).__name__}')

    def _parse_chunk(self, chunk: Any) -> Tuple[str, Optional[str], Optional[str]]:
        payload = self._convert_chunk(chunk)
        choices = payload.get('choices')
        if choices is None:
            return '', None, None
        if not isinstance(choices, list):
            raise LLMProtocolError('Malformed stream payload: choices is not a list')
        if not choices:
            return '', None, None
        choice = choices[0]
        if not isinstance(choice, dict):
            raise LLMProtocolError('Malformed stream payload: choice is not an object')
        delta = choice.get('delta') or {}
        if not isinstance(delta, dict):
            raise LLMProtocolError('Malformed stream payload: delta is not an object')
        content = delta.get('content')
        if content is not None and not isinstance(content, str):
            raise LLMProtocolError('Malformed stream payload: content is not text')
        return content or '', choice.get('finish_reason'), delta.get('refusal') or None

    def _map_error(self, exc: Exception) -> GatewayError:
        # Order matters: the SDK's error classes form a hierarchy.
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError)):
            logger.warning('llm.request_rejected', error=str(exc))
            return LLMUnavailableError(f'LLM provider rejected the session: {exc}', recoverable=False)
        if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
            logger.warning('llm.bad_request', error=str(exc))
            return LLMProtocolError(f'LLM provider rejected the request: {exc}')
        if isinstance(exc, openai.APIResponseValidationError):
            return LLMProtocolError(f'Malformed LLM response: {exc}')
        if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError, openai.APIStatusError)):
            logger.warning('llm.unavailable', error=str(exc))
            return LLMUnavailableError(f'LLM provider unavailable: {exc}')
        return LLMProtocolError(f'LLM provider error: {exc}')

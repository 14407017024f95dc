"""
Shared fixtures: an in-memory catalogue store and a scripted OpenAI-style client.

The fakes sit behind the real CatalogueReader and LLMService so tests exercise
record validation, chunk parsing and error mapping end to end.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from playlist_chat.core.settings import CatalogueSettings, GatewaySettings, LLMProfile
from playlist_chat.main import create_app
from playlist_chat.services.catalogue import CatalogueReader
from playlist_chat.services.chat_session import ChatSessionManager
from playlist_chat.services.llm import LLMService

CATALOGUE_RECORDS: List[Dict[str, Any]] = [
    {
        'videoId': 'v1',
        'title': 'Intro to Python',
        'description': 'Variables, loops and functions.',
        'durationSeconds': 754,
        'viewCount': '1200',
        'likeCount': 80,
        'topicCategories': ['https://en.wikipedia.org/wiki/Programming'],
        'publishedAt': '2024-01-10T00:00:00Z',
        'thumbnailUrl': 'https://img.example/v1.jpg',
        'channelTitle': 'Code Club',
        'associatedPlaylistIds': ['PL1'],
    },
    {
        'videoId': 'v2',
        'title': 'Async IO deep dive',
        'description': '',
        'durationSeconds': 3725,
        'viewCount': 540,
        'publishedAt': '2024-03-02T12:00:00Z',
        'associatedPlaylistIds': ['PL1'],
    },
    {
        'videoId': 'v3',
        'title': 'Cooking pasta',
        'durationSeconds': 300,
        'publishedAt': '2023-11-20T08:30:00Z',
        'associatedPlaylistIds': ['PL1', 'PL2'],
    },
    {
        'videoId': 'v4',
        'title': 'Knife skills',
        'durationSeconds': 95,
        'associatedPlaylistIds': ['PL2'],
    },
]


class FakeCatalogueStore:
    def __init__(self, records=None, *, error: Optional[BaseException] = None) -> None:
        self.records = [dict(record) for record in (records if records is not None else CATALOGUE_RECORDS)]
        self.error = error
        self.queries: List[str] = []

    def query_playlist(self, playlist_id: str) -> List[Dict[str, Any]]:
        self.queries.append(playlist_id)
        if self.error is not None:
            raise self.error
        return [dict(record) for record in self.records if playlist_id in record.get('associatedPlaylistIds', [])]


def text_chunk(text: Optional[str], finish_reason: Optional[str] = None) -> Dict[str, Any]:
    return {'choices': [{'index': 0, 'delta': {'content': text}, 'finish_reason': finish_reason}]}


class FakeStream:
    def __init__(self, chunks: List[Any], *, delay: float = 0.0) -> None:
        self._chunks = chunks
        self._delay = delay
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    async def close(self) -> None:
        self.closed = True


class FakeCompletions:
    def __init__(self, owner: 'FakeChatClient') -> None:
        self._owner = owner

    async def create(self, **kwargs):
        self._owner.requests.append(kwargs)
        reply = self._owner.next_reply()
        if isinstance(reply, BaseException):
            raise reply
        stream = FakeStream(reply, delay=self._owner.delay)
        self._owner.streams.append(stream)
        return stream


class FakeChatClient:
    """Stand-in for AsyncOpenAI: each create() call consumes the next scripted reply."""

    DEFAULT_REPLY = '{"suggestedVideos": []}'

    def __init__(self, *, delay: float = 0.0) -> None:
        self.replies: List[Any] = []
        self.requests: List[Dict[str, Any]] = []
        self.streams: List[FakeStream] = []
        self.delay = delay
        self.closed = False
        self.chat = SimpleNamespace(completions=FakeCompletions(self))

    def queue_text(self, *fragments: str) -> 'FakeChatClient':
        chunks = [text_chunk(fragment) for fragment in fragments]
        chunks.append(text_chunk(None, finish_reason='stop'))
        self.replies.append(chunks)
        return self

    def queue(self, reply: Any) -> 'FakeChatClient':
        self.replies.append(reply)
        return self

    def next_reply(self) -> Any:
        if self.replies:
            return self.replies.pop(0)
        return [text_chunk(self.DEFAULT_REPLY), text_chunk(None, finish_reason='stop')]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def catalogue_store() -> FakeCatalogueStore:
    return FakeCatalogueStore()


@pytest.fixture()
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture()
def llm_profile() -> LLMProfile:
    return LLMProfile(apiKey='test-key', defaultModel='gemini-2.5-flash')


@pytest.fixture()
def llm_service(llm_profile, chat_client) -> LLMService:
    return LLMService(llm_profile, client=chat_client)


@pytest.fixture()
def chat_manager(catalogue_store, llm_service) -> ChatSessionManager:
    return ChatSessionManager(CatalogueReader(catalogue_store), llm_service, turn_timeout_seconds=5.0)


@pytest.fixture()
def gateway_settings(llm_profile) -> GatewaySettings:
    return GatewaySettings(
        llm=llm_profile,
        catalogue=CatalogueSettings(backend='json', filePath='unused.json'),
        turnTimeoutSeconds=5.0,
        idleTimeoutSeconds=0.0,
    )


@pytest.fixture()
def make_app(gateway_settings, catalogue_store, llm_profile):
    def _make(client: Optional[FakeChatClient] = None, **overrides):
        settings = gateway_settings.model_copy(update=overrides)
        service = LLMService(llm_profile, client=client or FakeChatClient())
        return create_app(settings, catalogue_store=catalogue_store, llm_service=service)

    return _make

import httpx
import openai
import pytest

from conftest import FakeChatClient, text_chunk
from playlist_chat.core.errors import ErrorCode, LLMProtocolError, LLMRefusedError, LLMUnavailableError
from playlist_chat.core.settings import LLMProfile
from playlist_chat.services.llm import (
    CATALOGUE_PREFIX,
    MODEL_ACKNOWLEDGEMENT,
    SYSTEM_PREAMBLE,
    LLMService,
)

_REQUEST = httpx.Request('POST', 'https://llm.example/v1/chat/completions')


def _status_error(cls, status_code):
    response = httpx.Response(status_code, request=_REQUEST)
    return cls('provider said no', response=response, body=None)


async def _collect(service, handle, text):
    return [fragment async for fragment in service.stream(handle, text)]


@pytest.mark.asyncio
async def test_start_chat_primes_history(llm_service):
    handle = await llm_service.start_chat('gemini-2.5-pro', SYSTEM_PREAMBLE, '[{"ID": "v1"}]')
    assert handle.model_id == 'gemini-2.5-pro'
    assert handle.history == [
        {'role': 'user', 'content': SYSTEM_PREAMBLE},
        {'role': 'assistant', 'content': MODEL_ACKNOWLEDGEMENT},
        {'role': 'user', 'content': CATALOGUE_PREFIX + '[{"ID": "v1"}]'},
    ]


@pytest.mark.asyncio
async def test_stream_yields_fragments_and_extends_history(llm_service, chat_client):
    chat_client.queue_text('{"suggested', 'Videos": []}')
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')

    assert await _collect(llm_service, handle, 'python basics') == ['{"suggested', 'Videos": []}']
    assert handle.history[-2:] == [
        {'role': 'user', 'content': 'python basics'},
        {'role': 'assistant', 'content': '{"suggestedVideos": []}'},
    ]
    assert chat_client.streams[0].closed


@pytest.mark.asyncio
async def test_request_carries_generation_settings(llm_service, chat_client):
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    await _collect(llm_service, handle, 'anything')

    (request,) = chat_client.requests
    assert request['model'] == 'gemini-2.5-flash'
    assert request['stream'] is True
    assert request['temperature'] == 0
    assert request['response_format'] == {'type': 'json_object'}
    assert request['messages'][-1] == {'role': 'user', 'content': 'anything'}
    assert len(request['messages']) == 4
    safety = request['extra_body']['extra_body']['google']['safety_settings']
    assert {item['threshold'] for item in safety} == {'BLOCK_NONE'}
    assert len(safety) == 4


@pytest.mark.asyncio
async def test_content_filter_is_a_refusal(llm_service, chat_client):
    chat_client.queue([text_chunk('{"sugg'), text_chunk(None, finish_reason='content_filter')])
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    before = list(handle.history)

    with pytest.raises(LLMRefusedError) as info:
        await _collect(llm_service, handle, 'something')
    assert info.value.code is ErrorCode.LLM_REFUSED
    assert info.value.recoverable
    assert handle.history == before
    assert chat_client.streams[0].closed


@pytest.mark.asyncio
async def test_connection_error_is_recoverable(llm_service, chat_client):
    chat_client.queue(openai.APIConnectionError(request=_REQUEST))
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    with pytest.raises(LLMUnavailableError) as info:
        await _collect(llm_service, handle, 'q')
    assert info.value.recoverable


@pytest.mark.asyncio
async def test_mid_stream_transport_error(llm_service, chat_client):
    chat_client.queue([text_chunk('{'), httpx.ReadError('reset', request=_REQUEST)])
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    with pytest.raises(LLMUnavailableError):
        await _collect(llm_service, handle, 'q')
    assert len(handle.history) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'error, expected, recoverable',
    [
        (_status_error(openai.AuthenticationError, 401), LLMUnavailableError, False),
        (_status_error(openai.NotFoundError, 404), LLMUnavailableError, False),
        (_status_error(openai.RateLimitError, 429), LLMUnavailableError, True),
        (_status_error(openai.InternalServerError, 500), LLMUnavailableError, True),
        (_status_error(openai.BadRequestError, 400), LLMProtocolError, True),
    ],
)
async def test_status_errors_are_mapped(llm_service, chat_client, error, expected, recoverable):
    chat_client.queue(error)
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    with pytest.raises(expected) as info:
        await _collect(llm_service, handle, 'q')
    assert info.value.recoverable is recoverable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'chunk',
    [
        {'choices': 'nope'},
        {'choices': ['nope']},
        {'choices': [{'delta': 'text'}]},
        {'choices': [{'delta': {'content': 42}}]},
        'not a chunk',
    ],
)
async def test_malformed_chunks_are_protocol_errors(llm_service, chat_client, chunk):
    chat_client.queue([chunk])
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    with pytest.raises(LLMProtocolError):
        await _collect(llm_service, handle, 'q')


@pytest.mark.asyncio
async def test_chunks_without_choices_are_skipped(llm_service, chat_client):
    chat_client.queue([{'choices': []}, {'usage': {}}, text_chunk('{}'), text_chunk(None, 'stop')])
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    assert await _collect(llm_service, handle, 'q') == ['{}']


@pytest.mark.asyncio
async def test_released_handle_cannot_stream(llm_service, chat_client):
    handle = await llm_service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    llm_service.release(handle)
    llm_service.release(handle)
    assert handle.released and handle.history == []
    with pytest.raises(LLMUnavailableError) as info:
        await _collect(llm_service, handle, 'q')
    assert not info.value.recoverable
    assert chat_client.requests == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_at_start():
    service = LLMService(LLMProfile(apiKey=''))
    with pytest.raises(LLMUnavailableError) as info:
        await service.start_chat('gemini-2.5-flash', SYSTEM_PREAMBLE, '[]')
    assert not info.value.recoverable


@pytest.mark.asyncio
async def test_aclose_closes_client():
    client = FakeChatClient()
    service = LLMService(LLMProfile(apiKey='k'), client=client)
    await service.aclose()
    assert client.closed

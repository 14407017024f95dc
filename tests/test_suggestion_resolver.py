import random

import pytest

from conftest import CATALOGUE_RECORDS
from playlist_chat.schemas.video import Suggestion, Video
from playlist_chat.services.suggestion_resolver import (
    ANSWER_EMPTY,
    ANSWER_FOUND,
    ANSWER_UNMATCHED,
    format_duration,
    resolve,
)


@pytest.fixture()
def videos():
    return tuple(Video.model_validate(record) for record in CATALOGUE_RECORDS)


@pytest.mark.parametrize(
    'seconds, expected',
    [
        (0, '00:00'),
        (59, '00:59'),
        (61, '01:01'),
        (754, '12:34'),
        (3599, '59:59'),
        (3600, '01:00:00'),
        (3661.9, '01:01:01'),
        (86399, '23:59:59'),
        (360000, '100:00:00'),
        ('90', '01:30'),
        (None, '00:00'),
        (-5, '00:00'),
        (float('nan'), '00:00'),
        (float('inf'), '00:00'),
        (True, '00:00'),
        ('abc', '00:00'),
        ([], '00:00'),
    ],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_duration_round_trip():
    rng = random.Random(7)
    for _ in range(300):
        seconds = rng.randint(0, 200000)
        parts = [int(part) for part in format_duration(seconds).split(':')]
        if len(parts) == 2:
            parts.insert(0, 0)
        hours, minutes, secs = parts
        assert hours * 3600 + minutes * 60 + secs == seconds
        assert minutes < 60 and secs < 60


def test_resolve_enriches_in_model_order(videos):
    suggestions = [Suggestion(videoId='v2', reason='async'), Suggestion(videoId='v1', reason='basics')]
    resolution = resolve(suggestions, videos, raw_text='{...}')
    assert resolution.answer == ANSWER_FOUND
    assert [item['videoId'] for item in resolution.suggested_videos] == ['v2', 'v1']
    first, second = resolution.suggested_videos
    assert first['duration'] == '01:02:05'
    assert first['reason'] == 'async'
    assert second['duration'] == '12:34'
    assert second['viewCount'] == 1200
    assert second['title'] == 'Intro to Python'
    assert second['publishedAt'].startswith('2024-01-10T00:00:00')
    # Store attributes outside the known schema are passed through.
    assert second['associatedPlaylistIds'] == ['PL1']


def test_unknown_ids_are_dropped(videos):
    suggestions = [Suggestion(videoId='ghost'), Suggestion(videoId='v3', reason='dinner')]
    resolution = resolve(suggestions, videos, raw_text='x')
    assert [item['videoId'] for item in resolution.suggested_videos] == ['v3']
    assert resolution.answer == ANSWER_FOUND


def test_no_match_with_model_text(videos):
    resolution = resolve([Suggestion(videoId='ghost')], videos, raw_text='{"suggestedVideos": [{"videoId": "ghost"}]}')
    assert resolution.suggested_videos == []
    assert resolution.answer == ANSWER_UNMATCHED


@pytest.mark.parametrize('raw_text', ['', '   \n'])
def test_no_match_without_model_text(videos, raw_text):
    resolution = resolve([], videos, raw_text=raw_text)
    assert resolution.suggested_videos == []
    assert resolution.answer == ANSWER_EMPTY


def test_every_enriched_id_is_in_catalogue(videos):
    rng = random.Random(3)
    known = {video.videoId for video in videos}
    pool = sorted(known) + ['x1', 'x2', 'v', '']
    for _ in range(100):
        suggestions = [Suggestion(videoId=vid) for vid in rng.sample(pool, 4) if vid]
        resolution = resolve(suggestions, videos, raw_text='{}')
        assert {item['videoId'] for item in resolution.suggested_videos} <= known

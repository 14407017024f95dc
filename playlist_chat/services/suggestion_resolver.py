# File: playlist_chat/services/suggestion_resolver.py
# Project: Playlist Chat Gateway
# Description: Joins model suggestions with the session catalogue and builds the final answer payload.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import structlog

from ..schemas.video import EnrichedSuggestion, Suggestion, Video

logger = structlog.get_logger(__name__)

ANSWER_FOUND = 'Based on your query, I found these videos:'
ANSWER_UNMATCHED = 'The AI returned data but no matching videos were found or the format was unexpected.'
ANSWER_EMPTY = 'Could not find any videos matching your query in this playlist.'


def _as_seconds(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value < 0:
        return None
    return int(math.floor(value))


def format_duration(total_seconds: Any) -> str:
    """`HH:MM:SS` when there is at least one hour, else `MM:SS`; unusable input gives `00:00`."""
    seconds = _as_seconds(total_seconds)
    if seconds is None:
        return '00:00'
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f'{hours:02d}:{minutes:02d}:{secs:02d}'
    return f'{minutes:02d}:{secs:02d}'


@dataclass
class Resolution:
    answer: str
    suggested_videos: List[Dict[str, Any]] = field(default_factory=list)


def enrich(video: Video, reason: str) -> Dict[str, Any]:
    record = video.model_dump()
    record.update(duration=format_duration(video.durationSeconds), reason=reason)
    return EnrichedSuggestion.model_validate(record).model_dump(mode='json')


def resolve(suggestions: Sequence[Suggestion], videos: Sequence[Video], raw_text: str = '') -> Resolution:
    index = {video.videoId: video for video in videos}
    enriched: List[Dict[str, Any]] = []
    for suggestion in suggestions:
        video = index.get(suggestion.videoId)
        if video is None:
            logger.warning('suggestions.unknown_video', video_id=suggestion.videoId, catalogue_size=len(index))
            continue
        enriched.append(enrich(video, suggestion.reason))
    if enriched:
        answer = ANSWER_FOUND
    elif (raw_text or '').strip():
        answer = ANSWER_UNMATCHED
    else:
        answer = ANSWER_EMPTY
    return Resolution(answer=answer, suggested_videos=enriched)

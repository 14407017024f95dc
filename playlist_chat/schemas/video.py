# File: playlist_chat/schemas/video.py
# Project: Playlist Chat Gateway
# Description: Video catalogue records, LLM suggestions and the enriched suggestions sent back to clients.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def _coerce_non_negative_int(value: Any) -> Optional[int]:
    # Store values arrive as ints, floats or numeric strings depending on the importer.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value >= 0 else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if math.isfinite(number) and number >= 0 else None
    return None


class Video(BaseModel):
    """Immutable catalogue record; unknown store attributes are kept as extras."""
    videoId: str = Field(min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    durationSeconds: Optional[int] = None
    viewCount: Optional[int] = None
    likeCount: Optional[int] = None
    topicCategories: List[str] = Field(default_factory=list)
    publishedAt: Optional[datetime] = None
    thumbnailUrl: Optional[str] = None
    channelTitle: Optional[str] = None

    model_config = ConfigDict(extra='allow', frozen=True)

    @field_validator('durationSeconds', 'viewCount', 'likeCount', mode='before')
    @classmethod
    def _coerce_counts(cls, value: Any) -> Optional[int]:
        return _coerce_non_negative_int(value)

    @field_validator('topicCategories', mode='before')
    @classmethod
    def _coerce_topics(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        return []

    @field_validator('publishedAt', mode='wrap')
    @classmethod
    def _lenient_published_at(cls, value: Any, handler) -> Optional[datetime]:
        # A malformed timestamp should not cost us the whole record.
        if value in (None, ''):
            return None
        try:
            return handler(value)
        except ValidationError:
            return None


class Suggestion(BaseModel):
    """A single `{videoId, reason}` pair produced by the model."""
    videoId: str = Field(min_length=1)
    reason: str = ''

    model_config = ConfigDict(extra='ignore')

    @field_validator('reason', mode='before')
    @classmethod
    def _coerce_reason(cls, value: Any) -> str:
        if value is None:
            return ''
        return value if isinstance(value, str) else str(value)


class EnrichedSuggestion(Video):
    """Catalogue record joined with the model's reason and a display duration."""
    duration: str
    reason: str = ''

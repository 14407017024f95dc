# File: playlist_chat/services/suggestion_parser.py
# Project: Playlist Chat Gateway
# Description: Permissive extraction of `{"suggestedVideos": [...]}` objects from noisy, fenced or concatenated model output.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import json
import re
from typing import Iterator, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from ..schemas.video import Suggestion

logger = structlog.get_logger(__name__)

# C0 and C1 control characters except tab, LF and CR.
_CONTROL_CHARS = re.compile('[\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f-\u009f]')
_FENCE_OPEN = '```json'
_FENCE_CLOSE = '```'
_SNIPPET_LIMIT = 200


def sanitize(text: str) -> str:
    return _CONTROL_CHARS.sub('', text)


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith(_FENCE_OPEN):
        stripped = stripped[len(_FENCE_OPEN):]
    if stripped.endswith(_FENCE_CLOSE):
        stripped = stripped[: -len(_FENCE_CLOSE)]
    return stripped.strip()


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index of the brace closing the object opened at `start`, or None when the tail is unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            # Braces inside string literals do not affect nesting.
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return index
    return None


def _plain_balanced_end(text: str, start: int) -> Optional[int]:
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return index
    return None


def iter_json_candidates(text: str) -> Iterator[Tuple[int, str]]:
    """Yield `(offset, substring)` for each top-level balanced `{...}` run in order."""
    position = 0
    while position < len(text):
        start = text.find('{', position)
        if start == -1:
            return
        end = _balanced_end(text, start)
        if end is None:
            # A stray quote can hide every later brace; retry ignoring string literals.
            end = _plain_balanced_end(text, start)
        if end is None:
            logger.warning('suggestions.unbalanced_tail', snippet=text[start:start + _SNIPPET_LIMIT])
            return
        yield start, text[start:end + 1]
        position = end + 1


def _suggestions_from_candidate(candidate: str) -> List[Suggestion]:
    try:
        parsed = json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        logger.warning('suggestions.parse_failed', error=str(exc)[:120], snippet=candidate[:_SNIPPET_LIMIT])
        return []
    items = parsed.get('suggestedVideos') if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        logger.warning('suggestions.unexpected_shape', snippet=candidate[:_SNIPPET_LIMIT])
        return []
    suggestions: List[Suggestion] = []
    for item in items:
        try:
            suggestions.append(Suggestion.model_validate(item))
        except ValidationError:
            logger.warning('suggestions.item_rejected', item=repr(item)[:_SNIPPET_LIMIT])
    return suggestions


def extract_suggestions(raw_text: Union[str, bytes, None]) -> List[Suggestion]:
    """Collect every suggestion found in `raw_text`; never raises and returns [] on total failure."""
    try:
        if raw_text is None:
            return []
        if isinstance(raw_text, (bytes, bytearray)):
            raw_text = bytes(raw_text).decode('utf-8', errors='replace')
        text = _strip_fences(sanitize(raw_text))
        suggestions: List[Suggestion] = []
        for _, candidate in iter_json_candidates(text):
            suggestions.extend(_suggestions_from_candidate(candidate))
        return suggestions
    except Exception as exc:
        logger.warning('suggestions.extract_failed', error=str(exc)[:120])
        return []

# File: playlist_chat/services/catalogue.py
# Project: Playlist Chat Gateway
# Description: Read-only catalogue access that loads the videos of a playlist from Datastore or a JSON file.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import structlog
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import datastore
from google.cloud.datastore.query import PropertyFilter
from pydantic import ValidationError

from ..core.errors import CatalogueUnavailableError, PlaylistEmptyError
from ..core.settings import CatalogueSettings
from ..schemas.video import Video

logger = structlog.get_logger(__name__)

# Failures that mean the store could not be reached or read, as opposed to a bug in our code.
_STORE_ERRORS = (
    google_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    OSError,
    ValueError,
)


class CatalogueStore(Protocol):
    def query_playlist(self, playlist_id: str) -> List[Dict[str, Any]]:
        """Return raw video records whose membership field contains `playlist_id`."""


def _json_friendly(value: Any) -> Any:
    # Datastore entities may carry keys, blobs or geo points; keep only what the client can decode.
    if value is None or isinstance(value, (str, int, float, bool, datetime, date)):
        return value
    if isinstance(value, dict):
        return {str(key): _json_friendly(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_friendly(item) for item in value]
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


class DatastoreCatalogueStore:
    """Catalogue backed by a Google Cloud Datastore kind with a list-valued membership property."""

    def __init__(
        self,
        *,
        kind: str = 'Videos',
        membership_field: str = 'associatedPlaylistIds',
        project_id: Optional[str] = None,
        client: Optional[datastore.Client] = None,
    ) -> None:
        self._kind = kind
        self._membership_field = membership_field
        self._project_id = project_id
        self._client = client
        self._lock = RLock()

    def _get_client(self) -> datastore.Client:
        # Created lazily so the process can start without credentials until the first INIT.
        with self._lock:
            if self._client is None:
                self._client = datastore.Client(project=self._project_id)
            return self._client

    def query_playlist(self, playlist_id: str) -> List[Dict[str, Any]]:
        client = self._get_client()
        query = client.query(kind=self._kind)
        # Equality on a list property matches entities where any element equals the value.
        query.add_filter(filter=PropertyFilter(self._membership_field, '=', playlist_id))
        return [self._entity_to_record(entity) for entity in query.fetch()]

    def _entity_to_record(self, entity: datastore.Entity) -> Dict[str, Any]:
        record = _json_friendly(dict(entity))
        if not record.get('videoId') and entity.key is not None:
            record['videoId'] = entity.key.name or str(entity.key.id)
        return record


class JsonFileCatalogueStore:
    """Catalogue read from a JSON array of video records; used for local runs and tests."""

    def __init__(self, path: Path | str, *, membership_field: str = 'associatedPlaylistIds') -> None:
        self._path = Path(path)
        self._membership_field = membership_field
        self._records: Optional[List[Dict[str, Any]]] = None
        self._lock = RLock()

    def _load(self) -> List[Dict[str, Any]]:
        with self._lock:
            if self._records is None:
                data = json.loads(self._path.read_text(encoding='utf-8'))
                if not isinstance(data, list):
                    raise ValueError(f'Catalogue file {self._path} must contain a JSON array')
                self._records = [item for item in data if isinstance(item, dict)]
            return self._records

    def query_playlist(self, playlist_id: str) -> List[Dict[str, Any]]:
        matches: List[Dict[str, Any]] = []
        for record in self._load():
            membership = record.get(self._membership_field)
            if isinstance(membership, (list, tuple, set)):
                if playlist_id in membership:
                    matches.append(dict(record))
            elif membership == playlist_id:
                matches.append(dict(record))
        return matches


def build_catalogue_store(settings: CatalogueSettings) -> CatalogueStore:
    if settings.backend == 'json':
        return JsonFileCatalogueStore(settings.filePath or '', membership_field=settings.membershipField)
    return DatastoreCatalogueStore(
        kind=settings.kind,
        membership_field=settings.membershipField,
        project_id=settings.projectId,
    )


def _newest_first_key(video: Video) -> Tuple[int, float, str]:
    if video.publishedAt is None:
        return (1, 0.0, video.videoId)
    return (0, -video.publishedAt.timestamp(), video.videoId)


def limit_newest(videos: Sequence[Video], max_videos: int) -> Tuple[Video, ...]:
    """Keep the newest `max_videos` entries; 0 means no limit and preserves store order."""
    if max_videos <= 0 or len(videos) <= max_videos:
        return tuple(videos)
    return tuple(sorted(videos, key=_newest_first_key)[:max_videos])


class CatalogueReader:
    def __init__(self, store: CatalogueStore, *, max_videos: int = 0) -> None:
        self._store = store
        self._max_videos = max_videos

    async def fetch_playlist_videos(self, playlist_id: str) -> Tuple[Video, ...]:
        logger.info('catalogue.fetch.start', playlist_id=playlist_id)
        try:
            # Store clients are synchronous; keep the event loop free while they run.
            records = await asyncio.to_thread(self._store.query_playlist, playlist_id)
        except _STORE_ERRORS as exc:
            logger.warning('catalogue.fetch.failed', playlist_id=playlist_id, error=str(exc))
            raise CatalogueUnavailableError(f'Catalogue unavailable for playlist {playlist_id}') from exc
        videos = list(self._validate(records, playlist_id))
        if not videos:
            raise PlaylistEmptyError(f'No videos found for playlist {playlist_id}')
        limited = limit_newest(videos, self._max_videos)
        if len(limited) < len(videos):
            logger.info('catalogue.fetch.truncated', playlist_id=playlist_id, kept=len(limited), total=len(videos))
        logger.info('catalogue.fetch.done', playlist_id=playlist_id, count=len(limited))
        return limited

    def _validate(self, records: Iterable[Dict[str, Any]], playlist_id: str) -> Iterable[Video]:
        for record in records:
            try:
                yield Video.model_validate(record)
            except ValidationError as exc:
                logger.warning(
                    'catalogue.record_invalid',
                    playlist_id=playlist_id,
                    video_id=record.get('videoId'),
                    error=str(exc.errors()[:1]),
                )


def catalogue_context(videos: Sequence[Video]) -> str:
    """Pretty JSON projection of the catalogue that primes the chat session."""
    entries = []
    for video in videos:
        published = None
        if video.publishedAt is not None:
            published = int(video.publishedAt.timestamp() * 1000)
        entries.append(
            {
                'ID': video.videoId,
                'Title': video.title,
                'Description': video.description or 'N/A',
                'DurationSeconds': video.durationSeconds,
                'Views': video.viewCount,
                'Likes': video.likeCount,
                'Topics': list(video.topicCategories),
                'PublishedTimestamp': published,
            }
        )
    return json.dumps(entries, indent=2, ensure_ascii=False)

# File: playlist_chat/core/settings.py
# Project: Playlist Chat Gateway
# Description: Settings models for the gateway, LLM provider profile and catalogue store, resolved from environment.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import _get_env_bool, _get_env_float, _get_env_int, _get_env_str
from .errors import ConfigurationError

DEFAULT_LLM_BASE_URL = 'https://generativelanguage.googleapis.com/v1beta/openai/'
DEFAULT_MODEL_ID = 'gemini-2.5-flash'


class LLMProfile(BaseModel):
    """Connection details for the upstream chat completion provider."""
    apiKey: str = Field(alias='apiKey')
    baseUrl: str = Field(default=DEFAULT_LLM_BASE_URL, alias='baseUrl')
    defaultModel: str = Field(default=DEFAULT_MODEL_ID, alias='defaultModel')
    # Transport timeout for a single upstream request, independent of the turn cap.
    timeoutMs: int = Field(default=120000, alias='timeoutMs')

    model_config = ConfigDict(populate_by_name=True)


class CatalogueSettings(BaseModel):
    """Where playlist videos are read from and how membership is matched."""
    backend: Literal['datastore', 'json'] = 'datastore'
    kind: str = 'Videos'
    membershipField: str = Field(default='associatedPlaylistIds', alias='membershipField')
    projectId: Optional[str] = Field(default=None, alias='projectId')
    filePath: Optional[str] = Field(default=None, alias='filePath')
    # 0 disables the cap; otherwise the newest N videos are kept.
    maxVideos: int = Field(default=0, ge=0, alias='maxVideos')

    model_config = ConfigDict(populate_by_name=True)


class GatewaySettings(BaseModel):
    """Top-level settings container for the websocket gateway process."""
    host: str = '0.0.0.0'
    port: int = 8080
    llm: LLMProfile
    catalogue: CatalogueSettings = Field(default_factory=CatalogueSettings)
    turnTimeoutSeconds: float = Field(default=120.0, gt=0, alias='turnTimeoutSeconds')
    idleTimeoutSeconds: float = Field(default=600.0, ge=0, alias='idleTimeoutSeconds')
    perMessageDeflate: bool = Field(default=True, alias='perMessageDeflate')
    logLevel: str = Field(default='INFO', alias='logLevel')

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_env(cls) -> 'GatewaySettings':
        """Build settings from process environment; a missing API key is fatal."""
        api_key = _get_env_str('LLM_API_KEY') or _get_env_str('GEMINI_API_KEY')
        if not api_key:
            raise ConfigurationError('LLM_API_KEY environment variable is not set.')
        llm = LLMProfile(
            apiKey=api_key,
            baseUrl=_get_env_str('LLM_BASE_URL', DEFAULT_LLM_BASE_URL),
            defaultModel=_get_env_str('DEFAULT_MODEL_ID', DEFAULT_MODEL_ID),
            timeoutMs=_get_env_int('LLM_TIMEOUT_MS', 120000),
        )
        backend = (_get_env_str('CATALOGUE_BACKEND', 'datastore') or 'datastore').lower()
        if backend not in ('datastore', 'json'):
            raise ConfigurationError(f'Unsupported CATALOGUE_BACKEND: {backend}')
        catalogue = CatalogueSettings(
            backend=backend,
            kind=_get_env_str('CATALOGUE_KIND', 'Videos'),
            membershipField=_get_env_str('CATALOGUE_MEMBERSHIP_FIELD', 'associatedPlaylistIds'),
            projectId=_get_env_str('GOOGLE_CLOUD_PROJECT'),
            filePath=_get_env_str('CATALOGUE_FILE'),
            maxVideos=max(_get_env_int('CATALOGUE_MAX_VIDEOS', 0), 0),
        )
        if catalogue.backend == 'json' and not catalogue.filePath:
            raise ConfigurationError('CATALOGUE_FILE is required when CATALOGUE_BACKEND=json.')
        return cls(
            host=_get_env_str('HOST', '0.0.0.0'),
            port=_get_env_int('PORT', 8080),
            llm=llm,
            catalogue=catalogue,
            turnTimeoutSeconds=max(_get_env_float('TURN_TIMEOUT_SECONDS', 120.0), 1.0),
            idleTimeoutSeconds=max(_get_env_float('IDLE_TIMEOUT_SECONDS', 600.0), 0.0),
            perMessageDeflate=_get_env_bool('WS_PER_MESSAGE_DEFLATE', True),
            logLevel=(_get_env_str('GATEWAY_LOG_LEVEL', 'INFO') or 'INFO').upper(),
        )

# File: playlist_chat/version.py
# Project: Playlist Chat Gateway
# Description: Resolves the gateway version from environment overrides, pyproject metadata or the installed distribution.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from importlib import metadata
from pathlib import Path

DISTRIBUTION_NAME = 'playlist-chat-gateway'


@lru_cache(maxsize=1)
def _read_pyproject_version() -> str | None:
    pyproject_path = Path(__file__).resolve().parents[1] / 'pyproject.toml'
    if not pyproject_path.exists():
        return None
    try:
        with pyproject_path.open('rb') as fp:
            data = tomllib.load(fp)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    project = data.get('project')
    if not isinstance(project, dict):
        return None
    version = project.get('version')
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _installed_version() -> str | None:
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return None


def _resolve_version() -> str:
    env_version = os.environ.get('GATEWAY_BUILD_VERSION') or os.environ.get('GATEWAY_VERSION')
    if env_version:
        return env_version
    return _read_pyproject_version() or _installed_version() or '0.0.0'


GATEWAY_VERSION = _resolve_version()

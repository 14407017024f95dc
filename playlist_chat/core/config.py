# File: playlist_chat/core/config.py
# Project: Playlist Chat Gateway
# Description: Environment helpers and the log directory default shared by settings and logging setup.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def default_log_dir() -> Path:
    """`GATEWAY_LOG_DIR`, else `./logs` under the directory the gateway is launched from."""
    return Path(os.environ.get('GATEWAY_LOG_DIR') or Path.cwd() / 'logs')


LOG_DIR = default_log_dir()

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


def _get_env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _get_env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or '').strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return default


def _get_env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default

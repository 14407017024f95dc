# File: playlist_chat/core/__init__.py
# Project: Playlist Chat Gateway
# Description: Configuration, logging, errors and dependency providers.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

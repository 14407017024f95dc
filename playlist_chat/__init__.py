# File: playlist_chat/__init__.py
# Project: Playlist Chat Gateway
# Description: Websocket gateway that answers natural-language questions about a video playlist with streamed LLM suggestions.

# Copyright (C) 2025 Tencent. All rights reserved.
# License: Licensed under the License Terms of Youtu-Tip (see license at repository root).
# Warranty: Provided on an "AS IS" basis, without warranties or conditions of any kind.
# Modifications must retain this notice.

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Exceptions raised by the soundboard library.

Every error carries the HTTP status the API layer answers with, so the
error middleware in sound_server.py never has to inspect messages.  A
manual stop is not an error: it resolves as a "stopped" playback outcome.
"""


class SoundboardError(Exception):
    status = 500

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class NotFound(SoundboardError):
    status = 404


class UploadError(SoundboardError):
    status = 400


class PlaybackError(SoundboardError):
    """Base class for failures reported by the playback supervisor."""


class NoPlayerAvailable(PlaybackError):
    status = 503

    def __init__(self, message: str = "No audio player available on this host"):
        super().__init__(message)


class AlreadyPlaying(PlaybackError):
    status = 409

    def __init__(self, message: str = "Already playing a sound. Please wait until it finishes."):
        super().__init__(message)


class LaunchError(PlaybackError):
    """Spawn, decode or playback failure that was not caused by a manual stop."""
    status = 502

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message)
        self.file_path = file_path

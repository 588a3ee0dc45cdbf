# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Player backends, volume policy and the playback supervisor.

``select_backend`` probes the host once at startup and returns the backend
the supervisor will use for every clip.  Candidates, in preference order:

  - ``mpv``          – native gain (default on Raspberry Pi OS desktop)
  - ``ffplay``       – native gain
  - ``mplayer``      – native gain (software mixer)
  - ``mpg123``       – native gain (scale factor)
  - ``play``         – SoX, native gain (linear multiplier)
  - ``ffmpeg+aplay`` – decode with gain filter, piped into ALSA aplay
  - ``aplay``        – ALSA only, no gain
  - ``none``         – nothing found; every play fails with NoPlayerAvailable
"""

import logging
import shutil

from .alsa import AplayBackend, FfmpegAplayPipeline
from .base import (
    STRATEGY_PIPELINE,
    STRATEGY_SINGLE,
    STRATEGY_UNAVAILABLE,
    InvocationArgs,
    NoBackend,
    PlayerBackend,
)
from .native import FfplayBackend, MplayerBackend, Mpg123Backend, MpvBackend, SoxBackend

logger = logging.getLogger(__name__)

__all__ = [
    "STRATEGY_PIPELINE",
    "STRATEGY_SINGLE",
    "STRATEGY_UNAVAILABLE",
    "AplayBackend",
    "FfmpegAplayPipeline",
    "FfplayBackend",
    "InvocationArgs",
    "MplayerBackend",
    "Mpg123Backend",
    "MpvBackend",
    "NoBackend",
    "PlayerBackend",
    "SoxBackend",
    "NATIVE_GAIN_BACKENDS",
    "select_backend",
]

NATIVE_GAIN_BACKENDS = (MpvBackend, FfplayBackend, MplayerBackend, Mpg123Backend, SoxBackend)


def _probe(which, name: str) -> str | None:
    """Return the resolved path of *name*, or None.  Never raises."""
    try:
        return which(name) or None
    except Exception as e:
        logger.debug("Probe for %s failed: %s", name, e)
        return None


def select_backend(which=shutil.which, preferred: str | None = None) -> PlayerBackend:
    """Pick the player backend for this host.

    which      – ``shutil.which``-style predicate (injectable for tests)
    preferred  – backend kind to try first (config ``player.preferred``)
    """
    candidates = list(NATIVE_GAIN_BACKENDS)
    if preferred:
        match = [c for c in candidates if c.kind == preferred]
        if match:
            candidates.remove(match[0])
            candidates.insert(0, match[0])
        elif preferred not in (FfmpegAplayPipeline.kind, AplayBackend.kind):
            logger.warning("Unknown preferred player '%s' - using auto-detection", preferred)

    if preferred == FfmpegAplayPipeline.kind:
        backend = _select_alsa(which)
        if backend is not None:
            return backend
    elif preferred == AplayBackend.kind:
        path = _probe(which, AplayBackend.binary)
        if path:
            logger.warning("Player backend: aplay (%s, preferred) - volume control unavailable", path)
            return AplayBackend(path)

    for backend_cls in candidates:
        path = _probe(which, backend_cls.binary)
        if path:
            backend = backend_cls(path)
            logger.info("Player backend: %s (%s, native gain)", backend.kind, path)
            return backend

    backend = _select_alsa(which)
    if backend is not None:
        return backend

    logger.error("No audio player found - install mpv, ffplay, mpg123 or alsa-utils")
    return NoBackend()


def _select_alsa(which) -> PlayerBackend | None:
    aplay = _probe(which, AplayBackend.binary)
    if not aplay:
        return None
    ffmpeg = _probe(which, FfmpegAplayPipeline.decoder_binary)
    if ffmpeg:
        logger.info("Player backend: ffmpeg (%s) | aplay (%s), gain via decode filter",
                    ffmpeg, aplay)
        return FfmpegAplayPipeline(aplay, ffmpeg)
    logger.warning("Player backend: aplay (%s) - volume control unavailable", aplay)
    return AplayBackend(aplay)

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Application volume policy.

The soundboard volume (0–100) is applied per clip through the backend's own
arguments and is independent of the ALSA/PipeWire mixer level.
"""

import logging

from .base import InvocationArgs, PlayerBackend

logger = logging.getLogger(__name__)

MIN_VOLUME = 0
MAX_VOLUME = 100
DEFAULT_VOLUME = 80


def clamp_volume(volume) -> int:
    return max(MIN_VOLUME, min(MAX_VOLUME, int(round(volume))))


def parse_volume(raw, default: int = DEFAULT_VOLUME) -> int:
    """Parse a stored setting value; fall back to *default* when absent or garbage."""
    if raw is None or raw == "":
        return clamp_volume(default)
    try:
        return clamp_volume(float(raw))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Unparseable volume %r - using %d", raw, default)
        return clamp_volume(default)


def build_invocation_args(backend: PlayerBackend, volume) -> InvocationArgs:
    """Resolve the arguments *backend* needs to play at *volume*.

    Out-of-range volumes are clamped first, so no backend ever sees a value
    outside 0–100.  Pure: no processes, no mixer calls.
    """
    capped = clamp_volume(volume)
    if capped != volume:
        logger.debug("Volume %r clamped to %d", volume, capped)
    return backend.build_args(capped)

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Bare ALSA playback - used when no general-purpose player is installed.

``aplay`` only understands raw/WAV audio and has no gain control, so:

  - with ``ffmpeg`` present, clips are decoded to WAV on stdout with a
    ``volume=`` audio filter and piped into ``aplay`` (FfmpegAplayPipeline)
  - without it, ``aplay`` plays the file directly and the volume setting is
    accepted but has no audible effect (AplayBackend)

Setup on Raspberry Pi OS:
  sudo apt install alsa-utils ffmpeg
  aplay -l   (should list the output card)
"""

from .base import STRATEGY_PIPELINE, InvocationArgs, PlayerBackend


class FfmpegAplayPipeline(PlayerBackend):
    """ffmpeg decodes with gain, aplay writes PCM to the sound card."""

    kind = "ffmpeg+aplay"
    binary = "aplay"
    decoder_binary = "ffmpeg"
    supports_native_gain = False
    strategy = STRATEGY_PIPELINE

    def __init__(self, executable: str | None = None, decoder: str | None = None):
        super().__init__(executable)
        self.decoder = decoder or self.decoder_binary

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(
            player=("-q",),
            decoder=("-filter:a", f"volume={volume / 100:.2f}"),
        )

    def describe(self) -> dict:
        info = super().describe()
        info["decoder"] = self.decoder
        return info


class AplayBackend(PlayerBackend):
    kind = "aplay"
    binary = "aplay"
    supports_native_gain = False

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(player=("-q",))

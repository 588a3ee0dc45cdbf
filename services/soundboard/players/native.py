# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
General-purpose players with their own gain control.

Each one takes the application volume as a command-line argument in its
own scale, so the system mixer is never touched:

  mpv      --volume=0..100            (passthrough)
  ffplay   -volume 0..100             (passthrough)
  mplayer  -softvol -volume 0..100    (passthrough, software mixer)
  mpg123   -f 0..32768                (scaled to the output scale factor)
  play     -v 0.00..1.00              (SoX linear multiplier)
"""

from .base import InvocationArgs, PlayerBackend

MPG123_MAX_SCALE = 32768


class MpvBackend(PlayerBackend):
    kind = "mpv"
    binary = "mpv"
    supports_native_gain = True

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(player=("--no-video", "--no-terminal", f"--volume={volume}"))


class FfplayBackend(PlayerBackend):
    kind = "ffplay"
    binary = "ffplay"
    supports_native_gain = True

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(player=(
            "-nodisp", "-autoexit", "-loglevel", "quiet", "-volume", str(volume),
        ))


class MplayerBackend(PlayerBackend):
    kind = "mplayer"
    binary = "mplayer"
    supports_native_gain = True

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(player=(
            "-really-quiet", "-novideo", "-softvol", "-volume", str(volume),
        ))


class Mpg123Backend(PlayerBackend):
    kind = "mpg123"
    binary = "mpg123"
    supports_native_gain = True

    def build_args(self, volume: int) -> InvocationArgs:
        scale = round(volume * MPG123_MAX_SCALE / 100)
        return InvocationArgs(player=("-q", "-f", str(scale)))


class SoxBackend(PlayerBackend):
    kind = "play"
    binary = "play"
    supports_native_gain = True

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs(player=("-q", "-v", f"{volume / 100:.2f}"))

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Abstract base class for soundboard player backends.

A backend is the external program (or decode→play pipeline) that actually
produces sound.  Every backend knows how to turn an application volume
into its own command-line arguments; how the process is started is decided
by its launch ``strategy``:

    single       – one process: ``<executable> <player args> <file>``
    pipeline     – ``<decoder> ... <decoder args>`` piped into
                   ``<executable> <player args>`` (gain applied by the decoder)
    unavailable  – nothing can be launched

Backends are resolved once at startup by ``select_backend`` and never
change afterwards.
"""

from abc import ABC, abstractmethod

STRATEGY_SINGLE = "single"
STRATEGY_PIPELINE = "pipeline"
STRATEGY_UNAVAILABLE = "unavailable"


class InvocationArgs:
    """Backend-specific arguments for one playback.

    ``player`` goes to the process that writes to the sound card,
    ``decoder`` to the decode stage of a pipeline (empty otherwise).
    """

    __slots__ = ("player", "decoder")

    def __init__(self, player=(), decoder=()):
        self.player = tuple(player)
        self.decoder = tuple(decoder)

    def __eq__(self, other):
        if not isinstance(other, InvocationArgs):
            return NotImplemented
        return self.player == other.player and self.decoder == other.decoder

    def __repr__(self):
        return f"InvocationArgs(player={self.player!r}, decoder={self.decoder!r})"


class PlayerBackend(ABC):
    """Interface every player backend must implement."""

    kind: str = ""
    binary: str = ""                  # executable name probed on $PATH
    supports_native_gain: bool = False
    strategy: str = STRATEGY_SINGLE

    def __init__(self, executable: str | None = None):
        self.executable = executable or self.binary

    @property
    def available(self) -> bool:
        return self.strategy != STRATEGY_UNAVAILABLE

    @abstractmethod
    def build_args(self, volume: int) -> InvocationArgs:
        """Map an already-clamped 0–100 volume to invocation arguments."""

    def describe(self) -> dict:
        return {
            "kind": self.kind,
            "strategy": self.strategy,
            "supportsNativeGain": self.supports_native_gain,
            "executable": self.executable or None,
        }

    def __repr__(self):
        return f"<{type(self).__name__} kind={self.kind} executable={self.executable!r}>"


class NoBackend(PlayerBackend):
    """Placeholder selected when no usable player exists on the host."""

    kind = "none"
    strategy = STRATEGY_UNAVAILABLE

    def build_args(self, volume: int) -> InvocationArgs:
        return InvocationArgs()

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
PlaybackSupervisor - owns the speaker.

Exactly one supervisor exists per service process.  It is built by the app
factory in sound_server.py and stored on the aiohttp application; nothing
else ever starts a player process.

Modes:

    queue      append to the FIFO queue; start draining it when idle
    interrupt  stop() whatever is playing (and clear the queue), then play
    block      play only when idle, otherwise raise AlreadyPlaying

State changes happen in plain (non-awaiting) methods on the event loop, so
they are atomic with respect to status() and stop().  Submissions that have
to await a process spawn are serialized with one asyncio.Lock; waiting for
a clip to finish happens outside the lock in a watcher task per handle.

Every handle's PlaybackResult is consumed once by ``_complete``; results of
handles that are no longer current are ignored.
"""

import asyncio
import logging
from collections import deque

from ..config import PLAYBACK_MODES
from ..errors import AlreadyPlaying, LaunchError, NoPlayerAvailable
from .base import PlayerBackend
from .launcher import DEFAULT_KILL_TIMEOUT, launch
from .volume import DEFAULT_VOLUME, build_invocation_args, clamp_volume

log = logging.getLogger(__name__)

MODE_QUEUE, MODE_INTERRUPT, MODE_BLOCK = PLAYBACK_MODES

# Lifecycle events passed to listeners
EVENT_PLAYING = "playing"
EVENT_FINISHED = "finished"
EVENT_STOPPED = "stopped"
EVENT_ERROR = "error"

DEFAULT_STARTUP_GRACE = 0.25


class PlaybackSupervisor:

    def __init__(self, backend: PlayerBackend, launcher=launch,
                 kill_timeout: float = DEFAULT_KILL_TIMEOUT,
                 startup_grace: float = DEFAULT_STARTUP_GRACE):
        self.backend = backend
        self._launcher = launcher
        self._kill_timeout = kill_timeout
        self._startup_grace = startup_grace

        self.is_playing = False
        self.current: str | None = None
        self.queue: deque[tuple[str, int]] = deque()   # (file_path, volume)
        self.volume = DEFAULT_VOLUME
        self._handle = None
        self._stopped_manually = False

        self._lock = asyncio.Lock()
        self._epoch = 0                 # bumped by stop(); cancels in-flight launches
        self._watchers: set[asyncio.Task] = set()
        self._listeners = []

    # ── Listeners ──

    def add_listener(self, callback):
        """Register ``callback(event, file_path, error)`` for lifecycle events."""
        self._listeners.append(callback)

    def _notify(self, event: str, file_path: str, error: str | None = None):
        for callback in list(self._listeners):
            try:
                callback(event, file_path, error)
            except Exception:
                log.exception("Playback listener failed on %s", event)

    # ── Public API ──

    async def submit(self, file_path: str, mode: str = MODE_QUEUE, volume=DEFAULT_VOLUME):
        """Play *file_path* according to *mode*.

        Returns once the clip is queued or its process has started; the end
        of playback is not awaited.
        """
        if mode not in PLAYBACK_MODES:
            raise ValueError(f"Invalid playback mode: {mode}")
        if not self.backend.available:
            raise NoPlayerAvailable()
        volume = clamp_volume(volume)

        if mode == MODE_QUEUE:
            self.queue.append((file_path, volume))
            log.info("Queued %s (%d pending)", file_path, len(self.queue))
            async with self._lock:
                await self._advance()
            return

        if mode == MODE_BLOCK and self._busy():
            raise AlreadyPlaying()

        # A stop() from here on cancels this submission
        epoch = self._epoch
        async with self._lock:
            if mode == MODE_INTERRUPT:
                previous = self._handle
                self.stop()
                epoch = self._epoch
                if previous is not None:
                    self._complete(previous, await previous.wait())
            elif self._busy():
                # Another block submission won the lock first
                raise AlreadyPlaying()
            handle = await self._start(file_path, volume, epoch)

        if handle is not None:
            await self._check_startup(handle)

    def stop(self):
        """Kill the current clip (if any) and clear the queue.

        Returns immediately; status() keeps reporting the clip as playing
        until its process exit has been observed.
        """
        self._epoch += 1
        if self._handle is not None and self._handle.live:
            self._stopped_manually = True
            log.info("Stopping %s", self.current)
            self._handle.kill()
        if self.queue:
            log.info("Cleared %d queued sound(s)", len(self.queue))
        self.queue.clear()

    def status(self) -> dict:
        return {
            "isPlaying": self.is_playing,
            "currentSound": self.current,
            "queueLength": len(self.queue),
            "queue": [file_path for file_path, _ in self.queue],
        }

    def discard(self, file_path: str):
        """Forget *file_path*: drop its queue entries and stop it if current.

        Other queued clips are kept and the queue advances as usual.
        """
        kept = [entry for entry in self.queue if entry[0] != file_path]
        if len(kept) != len(self.queue):
            log.info("Dropped %d queued play(s) of %s", len(self.queue) - len(kept), file_path)
            self.queue.clear()
            self.queue.extend(kept)
        if self.current == file_path and self._handle is not None and self._handle.live:
            self._stopped_manually = True
            log.info("Stopping %s", file_path)
            self._handle.kill()

    async def close(self):
        """Stop playback and wait for the player process to exit (shutdown).

        Takes the lock so a spawn already under way finishes and is then
        killed, instead of being cancelled halfway.
        """
        async with self._lock:
            handle = self._handle
            self.stop()
        if handle is not None:
            self._complete(handle, await handle.wait())
        for task in list(self._watchers):
            task.cancel()

    # ── Internal ──

    def _busy(self) -> bool:
        return self._handle is not None

    async def _start(self, file_path: str, volume: int, epoch: int | None = None):
        """Spawn the player for *file_path* and make it current.  Lock held.

        *epoch* is the stop() generation the request belongs to; the launch
        is abandoned if stop() has run since.
        """
        if epoch is None:
            epoch = self._epoch
        if epoch != self._epoch:
            log.info("Launch of %s cancelled by stop", file_path)
            return None
        args = build_invocation_args(self.backend, volume)
        handle = await self._launcher(file_path, self.backend, args,
                                      kill_timeout=self._kill_timeout)
        if epoch != self._epoch:
            # stop() ran while the process was spawning
            log.info("Launch of %s cancelled by stop", file_path)
            handle.kill()
            await handle.wait()
            return None

        self._handle = handle
        self._stopped_manually = False
        self.is_playing = True
        self.current = file_path
        self.volume = volume
        log.info("Playing %s (volume %d, %s)", file_path, volume, self.backend.kind)
        self._notify(EVENT_PLAYING, file_path)

        watcher = asyncio.create_task(self._watch(handle))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return handle

    async def _watch(self, handle):
        result = await handle.wait()
        self._complete(handle, result)
        if self.queue:
            async with self._lock:
                await self._advance()

    def _complete(self, handle, result):
        """Single state transition for a finished handle.  Never awaits."""
        if handle is not self._handle:
            return
        was_manual = self._stopped_manually or result.stopped
        file_path = self.current

        self.is_playing = False
        self.current = None
        self._handle = None
        self._stopped_manually = False

        if was_manual:
            log.info("Stopped %s", file_path)
            self._notify(EVENT_STOPPED, file_path)
        elif result.failed:
            log.warning("Playback of %s failed: %s", file_path, result.error)
            self._notify(EVENT_ERROR, file_path, result.error)
        else:
            log.info("Finished %s", file_path)
            self._notify(EVENT_FINISHED, file_path)

    async def _advance(self):
        """Start the next queued clip if idle.  Lock held.

        Launch failures are logged and skipped so one broken file never
        stalls the queue.
        """
        while self.queue and self._handle is None:
            file_path, volume = self.queue.popleft()
            try:
                await self._start(file_path, volume)
            except LaunchError as e:
                log.warning("Skipping queued %s: %s", file_path, e)
                self._notify(EVENT_ERROR, file_path, str(e))

    async def _check_startup(self, handle):
        """Surface an immediate failure to the caller (interrupt/block)."""
        if self._startup_grace <= 0:
            return
        try:
            result = await asyncio.wait_for(handle.wait(), self._startup_grace)
        except asyncio.TimeoutError:
            return
        if result.failed and not handle.killed:
            raise LaunchError(result.error or "Playback failed", handle.file_path)

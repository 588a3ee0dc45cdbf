# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Process launcher - starts the backend process(es) for one clip.

    handle = await launch(path, backend, build_invocation_args(backend, 80))
    handle.kill()                 # SIGTERM, SIGKILL after kill_timeout
    result = await handle.wait()  # PlaybackResult, resolved exactly once

Single-process backends run ``<executable> <player args> <file>``.  The
pipeline backend runs the decoder with its stdout connected to the
player's stdin through an OS pipe; both processes share one handle, and
the result is only resolved once every stage has exited.  The first
failure wins; exits after a failure or a kill are ignored.
"""

import asyncio
import logging
import os

from ..errors import LaunchError, NoPlayerAvailable
from .base import STRATEGY_PIPELINE, STRATEGY_UNAVAILABLE, InvocationArgs, PlayerBackend

logger = logging.getLogger(__name__)

OUTCOME_FINISHED = "finished"
OUTCOME_STOPPED = "stopped"
OUTCOME_FAILED = "failed"

DEFAULT_KILL_TIMEOUT = 2.0

DECODER_INPUT_FLAGS = ("-nostdin", "-loglevel", "error")
DECODER_OUTPUT_FLAGS = ("-f", "wav", "pipe:1")


class PlaybackResult:
    """How a launched clip ended: finished, stopped (killed) or failed."""

    __slots__ = ("outcome", "error")

    def __init__(self, outcome: str, error: str | None = None):
        self.outcome = outcome
        self.error = error

    @property
    def failed(self) -> bool:
        return self.outcome == OUTCOME_FAILED

    @property
    def stopped(self) -> bool:
        return self.outcome == OUTCOME_STOPPED

    def __repr__(self):
        if self.error:
            return f"PlaybackResult({self.outcome!r}, {self.error!r})"
        return f"PlaybackResult({self.outcome!r})"


class PlaybackHandle:
    """One running clip: a single process or a coupled decoder→player pair.

    ``stages`` is a list of ``(name, process)`` with the upstream stage
    first and the process writing to the sound card last.
    """

    def __init__(self, file_path: str, stages: list, kill_timeout: float = DEFAULT_KILL_TIMEOUT):
        self.file_path = file_path
        self._stages = stages
        self._kill_timeout = kill_timeout
        self._killed = False
        self._failure: str | None = None
        self._kill_timer: asyncio.TimerHandle | None = None
        loop = asyncio.get_running_loop()
        self._result: asyncio.Future = loop.create_future()
        self._monitor = loop.create_task(self._watch())

    @property
    def pids(self) -> list:
        return [proc.pid for _, proc in self._stages]

    @property
    def live(self) -> bool:
        return not self._result.done()

    @property
    def killed(self) -> bool:
        return self._killed

    def kill(self):
        """Terminate every stage.  Idempotent; escalates to SIGKILL."""
        if self._killed or self._result.done():
            return
        self._killed = True
        for _, proc in self._stages:
            _send(proc, "terminate")
        loop = asyncio.get_running_loop()
        self._kill_timer = loop.call_later(self._kill_timeout, self._force_kill)

    async def wait(self) -> PlaybackResult:
        return await asyncio.shield(self._result)

    # -- internal --

    def _force_kill(self):
        self._kill_timer = None
        for name, proc in self._stages:
            if proc.returncode is None:
                logger.warning("%s (pid %d) ignored SIGTERM - killing", name, proc.pid)
                _send(proc, "kill")

    async def _watch(self):
        await asyncio.gather(*(
            self._watch_stage(index, name, proc)
            for index, (name, proc) in enumerate(self._stages)
        ))
        self._resolve()

    async def _watch_stage(self, index: int, name: str, proc):
        _, stderr = await proc.communicate()
        rc = proc.returncode
        if rc == 0 or self._killed or self._failure is not None:
            return
        detail = _last_line(stderr)
        self._failure = f"{name} exited with code {rc}" + (f": {detail}" if detail else "")
        # Coupled lifetimes: a failing stage takes the rest of the pipeline down
        for other_index, (_, other) in enumerate(self._stages):
            if other_index != index:
                _send(other, "terminate")

    def _resolve(self):
        if self._result.done():
            return
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
        if self._failure is not None:
            result = PlaybackResult(OUTCOME_FAILED, self._failure)
        elif self._killed:
            result = PlaybackResult(OUTCOME_STOPPED)
        else:
            result = PlaybackResult(OUTCOME_FINISHED)
        self._result.set_result(result)


def _send(proc, method: str):
    if proc.returncode is not None:
        return
    try:
        getattr(proc, method)()
    except ProcessLookupError:
        pass


def _last_line(data: bytes | None) -> str:
    if not data:
        return ""
    lines = data.decode(errors="replace").strip().splitlines()
    return lines[-1].strip() if lines else ""


def _player_env() -> dict:
    env = os.environ.copy()
    env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return env


async def launch(file_path: str, backend: PlayerBackend, args: InvocationArgs,
                 kill_timeout: float = DEFAULT_KILL_TIMEOUT) -> PlaybackHandle:
    """Start playing *file_path*.  Returns as soon as the process(es) exist."""
    if backend.strategy == STRATEGY_UNAVAILABLE:
        raise NoPlayerAvailable()
    if backend.strategy == STRATEGY_PIPELINE:
        stages = await _spawn_pipeline(file_path, backend, args)
    else:
        stages = await _spawn_single(file_path, backend, args)
    handle = PlaybackHandle(file_path, stages, kill_timeout)
    logger.debug("Launched %s for %s (pids %s)", backend.kind, file_path, handle.pids)
    return handle


async def _spawn_single(file_path, backend, args) -> list:
    try:
        proc = await asyncio.create_subprocess_exec(
            backend.executable, *args.player, file_path,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            env=_player_env(),
        )
    except OSError as e:
        raise LaunchError(f"Could not start {backend.kind}: {e}", file_path) from e
    return [(backend.kind, proc)]


async def _spawn_pipeline(file_path, backend, args) -> list:
    env = _player_env()
    read_fd, write_fd = os.pipe()
    try:
        try:
            decoder = await asyncio.create_subprocess_exec(
                backend.decoder, *DECODER_INPUT_FLAGS, "-i", file_path,
                *args.decoder, *DECODER_OUTPUT_FLAGS,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=write_fd,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise LaunchError(f"Could not start decoder: {e}", file_path) from e
        try:
            player = await asyncio.create_subprocess_exec(
                backend.executable, *args.player,
                stdin=read_fd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            _send(decoder, "kill")
            await decoder.wait()
            raise LaunchError(f"Could not start {backend.executable}: {e}", file_path) from e
    finally:
        # The children hold their own copies; the player only sees EOF once
        # every write end is closed.
        os.close(read_fd)
        os.close(write_fd)
    return [("decoder", decoder), ("player", player)]

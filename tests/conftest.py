"""Shared fixtures: fake player processes and throwaway stores."""

import asyncio
import os
import stat

import pytest

from soundboard.errors import LaunchError
from soundboard.players import MpvBackend
from soundboard.players.launcher import (
    OUTCOME_FAILED,
    OUTCOME_FINISHED,
    OUTCOME_STOPPED,
    PlaybackResult,
)
from soundboard.store import SoundStore


class FakeHandle:
    """Stands in for PlaybackHandle; the test decides when the clip ends."""

    def __init__(self, file_path, exit_delay=0.0):
        self.file_path = file_path
        self.killed = False
        self.exit_delay = exit_delay      # seconds between kill() and process exit
        self._result = asyncio.get_running_loop().create_future()

    @property
    def live(self):
        return not self._result.done()

    def kill(self):
        if self.killed or self._result.done():
            return
        self.killed = True
        if self.exit_delay:
            asyncio.get_running_loop().call_later(
                self.exit_delay, self.finish, OUTCOME_STOPPED)
        else:
            self.finish(OUTCOME_STOPPED)

    def finish(self, outcome=OUTCOME_FINISHED, error=None):
        if not self._result.done():
            self._result.set_result(PlaybackResult(outcome, error))

    def fail(self, error="exited with code 1"):
        self.finish(OUTCOME_FAILED, error)

    async def wait(self):
        return await asyncio.shield(self._result)


class FakeLauncher:
    """Async callable with the signature of launcher.launch."""

    def __init__(self):
        self.calls = []
        self.handles = []
        self.spawn_fails = set()       # paths whose spawn raises LaunchError
        self.exits_at_once = set()     # paths whose process fails right away
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.max_live = 0
        self.exit_delay = 0.0

    async def __call__(self, file_path, backend, args, kill_timeout=2.0):
        self.calls.append((file_path, args))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if file_path in self.spawn_fails:
            raise LaunchError(f"Could not start {backend.kind}: No such file", file_path)
        self.max_live = max(self.max_live, len(self.live) + 1)
        handle = FakeHandle(file_path, self.exit_delay)
        if file_path in self.exits_at_once:
            handle.fail("decoder exited with code 1: Invalid data found")
        self.handles.append(handle)
        return handle

    @property
    def live(self):
        return [h for h in self.handles if h.live]

    @property
    def launched(self):
        return [h.file_path for h in self.handles]

    def current(self):
        live = self.live
        assert len(live) == 1, f"expected one live handle, got {len(live)}"
        return live[0]


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def backend():
    return MpvBackend("/usr/bin/mpv")


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)
    return _wait_until


@pytest.fixture
def store(tmp_path):
    s = SoundStore(str(tmp_path / "data" / "sounds.db"))
    s.open()
    yield s
    s.close()


@pytest.fixture
def make_script(tmp_path):
    """Write an executable /bin/sh script and return its path."""
    def _make(name, body):
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return _make


@pytest.fixture(autouse=True)
def _no_systemd(monkeypatch):
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    for name in ("PORT", "DATABASE_PATH", "UPLOAD_DIR", "MAX_FILE_SIZE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "clip.wav"
    path.write_bytes(b"RIFF" + os.urandom(32))
    return str(path)

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""Systemd notify integration for the soundboard service.

Sends READY=1 once, WATCHDOG=1 at regular intervals, and a STATUS= line
describing the speaker (shown by ``systemctl status pi-soundboard``).
Silently no-ops when NOTIFY_SOCKET is unset (macOS / dev mode).

Usage:
    from soundboard.watchdog import watchdog_loop, notify_status
    asyncio.create_task(watchdog_loop(status_fn=supervisor.status))
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send a notification message to the systemd notify socket."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
        return True
    except OSError as e:
        logger.debug("sd_notify(%s) failed: %s", msg, e)
        return False
    finally:
        sock.close()


def format_status(status: dict) -> str:
    """One-line summary of a supervisor status snapshot."""
    if not status.get("isPlaying"):
        line = "Idle"
    else:
        line = f"Playing {os.path.basename(status.get('currentSound') or '')}"
    queued = status.get("queueLength", 0)
    if queued:
        line += f" ({queued} queued)"
    return line


def notify_status(status: dict) -> bool:
    return sd_notify(f"STATUS={format_status(status)}")


async def watchdog_loop(interval: int = 20, status_fn=None):
    """Send WATCHDOG=1 every *interval* seconds.  Call as asyncio.create_task().

    Also sends READY=1 on first invocation so systemd knows the service
    has finished startup (requires Type=notify in the unit file).
    *status_fn* returns a supervisor status dict refreshed with each beat.
    """
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ds)", interval)
    while True:
        sd_notify("WATCHDOG=1")
        if status_fn is not None:
            notify_status(status_fn())
        await asyncio.sleep(interval)

# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Shared library for the Pi Soundboard service.

  config     – JSON config loader (``cfg``)
  errors     – exception taxonomy mapped to HTTP status codes
  players    – backend selection, volume policy, process launcher, supervisor
  store      – SQLite sound catalog and key/value settings
  uploads    – multipart upload ingestion and validation
  watchdog   – systemd notify / watchdog heartbeat
"""

# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures: short-lived Python children standing in for ffmpeg."""

import sys

import pytest

COPY_STDIN_TO_FILE = (
    "import shutil, sys\n"
    "with open(sys.argv[1], 'wb') as f:\n"
    "    shutil.copyfileobj(sys.stdin.buffer, f)\n"
)
EXIT_WITH_CODE = "import sys; sys.exit(int(sys.argv[1]))"
FAIL_WITH_STDERR = "import sys; sys.stderr.write('boom: invalid data\\n'); sys.stderr.flush(); sys.exit(3)"
IGNORE_STDIN = "import time; time.sleep(30)"
DRAIN_STDIN = "import sys; sys.stdin.buffer.read()"
CRASH_WHILE_READING = (
    "import os, sys, threading, time\n"
    "threading.Thread(\n"
    "    target=lambda: [None for _ in iter(lambda: sys.stdin.buffer.read(1024), b'')],\n"
    "    daemon=True,\n"
    ").start()\n"
    "time.sleep(float(sys.argv[1]))\n"
    "os._exit(1)\n"
)


@pytest.fixture
def copy_command(tmp_path):
    """Command that copies stdin to a file, and the file path."""
    output = tmp_path / "received.bin"
    return [sys.executable, "-c", COPY_STDIN_TO_FILE, str(output)], output


@pytest.fixture
def exit_command():
    """Factory for a command exiting immediately with ``code``."""

    def make(code: int):
        return [sys.executable, "-c", EXIT_WITH_CODE, str(code)]

    return make


@pytest.fixture
def failing_command():
    return [sys.executable, "-c", FAIL_WITH_STDERR]


@pytest.fixture
def stubborn_command():
    """Command that ignores stdin closing and must be killed."""
    return [sys.executable, "-c", IGNORE_STDIN]


@pytest.fixture
def drain_command():
    return [sys.executable, "-c", DRAIN_STDIN]


@pytest.fixture
def crash_command():
    """Factory for a command that consumes stdin, then exits 1 after ``delay`` seconds."""

    def make(delay: float):
        return [sys.executable, "-c", CRASH_WHILE_READING, str(delay)]

    return make

"""Shared types for the whisper worker line protocol.

The worker reads one file path per line on stdin and, some time later,
prints a line of the form ``Result: <text>`` on stdout. Everything else it
prints (progress, timings, model banners) is noise to the bridge.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

MARKER = "Result:"
UNPARSABLE_RESULT = "Could not parse result."


class WorkerState(str, Enum):
    """Supervisor lifecycle states."""

    STOPPED = "stopped"  # Not started, or stopped on shutdown
    STARTING = "starting"  # Spawn in progress
    RUNNING = "running"  # Process alive, stdin writable
    RESTARTING = "restarting"  # Waiting out the restart delay


@dataclass
class WorkerHandle:
    """Supervisor's view of one spawned worker process."""

    proc: Any  # asyncio.subprocess.Process
    spawned_at: float = field(default_factory=time.time)
    monitor_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self.proc.pid

    def is_alive(self) -> bool:
        """Check if worker process is still running."""
        return self.proc.returncode is None


@dataclass(frozen=True)
class RecognitionResult:
    """Recognized text for one file path."""

    file_path: str
    recognition: str

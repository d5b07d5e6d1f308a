"""Supervision and request correlation for the whisper worker process.

The worker is a long-running subprocess speaking a line protocol: one file
path per line on stdin, ``Result: <text>`` lines on stdout.

Key components:
- supervisor: WorkerSupervisor for spawn, exit detection and restart
- gate: RequestGate for single-flight admission and request timeouts
- correlator: OutputCorrelator for extracting results from raw stdout
- orchestrator: WorkerOrchestrator wiring the above into handle()
- protocol: Shared types and protocol constants
"""

from .correlator import OutputCorrelator
from .errors import (
    Busy,
    InvalidPayload,
    ProcessLost,
    ProcessUnavailable,
    RequestTimeout,
    WorkerBridgeError,
)
from .gate import PendingRequest, RequestGate
from .orchestrator import WorkerOrchestrator, get_orchestrator
from .protocol import RecognitionResult, WorkerHandle, WorkerState
from .supervisor import WorkerSupervisor

__all__ = [
    "OutputCorrelator",
    "Busy",
    "InvalidPayload",
    "ProcessLost",
    "ProcessUnavailable",
    "RequestTimeout",
    "WorkerBridgeError",
    "PendingRequest",
    "RequestGate",
    "WorkerOrchestrator",
    "get_orchestrator",
    "RecognitionResult",
    "WorkerHandle",
    "WorkerState",
    "WorkerSupervisor",
]

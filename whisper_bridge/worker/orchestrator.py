"""WorkerOrchestrator - request handling on top of the supervised worker.

Responsibilities:
- Admit one recognition request at a time
- Send the file path to the worker and correlate its output
- Fail in-flight requests when the worker dies
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .. import config
from .correlator import OutputCorrelator
from .errors import InvalidPayload, ProcessLost, ProcessUnavailable, WorkerBridgeError
from .gate import PendingRequest, RequestGate
from .protocol import RecognitionResult
from .supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)


class WorkerOrchestrator:
    """
    Turns the worker's line protocol into a request/response call.

    The protocol carries no request identifiers: correlation relies on only
    one request being in flight and on the output buffer being reset right
    before each request is written.

    A request that times out still owes the worker's result for its file.
    With ``discard_late_results`` enabled, that many marker lines are dropped
    before the next request can be resolved, so a late result is never handed
    to the wrong caller. The count starts over whenever the worker restarts.
    """

    def __init__(
        self,
        supervisor: WorkerSupervisor,
        gate: Optional[RequestGate] = None,
        correlator: Optional[OutputCorrelator] = None,
        discard_late_results: bool = True,
    ):
        """
        Initialize orchestrator and attach it to the supervisor's events.

        Args:
            supervisor: Supervisor owning the worker process
            gate: Single-flight gate (default: 120s request timeout)
            correlator: Output correlator for the worker's stdout
            discard_late_results: Drop results owed by timed-out requests
        """
        self.supervisor = supervisor
        self.gate = gate or RequestGate()
        self.correlator = correlator or OutputCorrelator()
        self.discard_late_results = discard_late_results

        self._owed_results = 0
        self.completed = 0
        self.failed = 0

        supervisor.on_output = self._on_output
        supervisor.on_exit = self._on_exit
        self.gate.on_timeout = self._on_timeout

    @property
    def owed_results(self) -> int:
        """Results the current worker still owes to timed-out requests."""
        return self._owed_results

    async def start(self) -> None:
        await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def handle(self, file_path: str) -> RecognitionResult:
        """
        Run recognition for one file on the worker.

        Args:
            file_path: Path of the audio file, passed to the worker as-is

        Returns:
            RecognitionResult with the text extracted from the worker output

        Raises:
            InvalidPayload: If the path is empty or spans multiple lines
            ProcessUnavailable: If no worker is running
            Busy: If another request is in flight
            RequestTimeout: If no result arrived within the request timeout
            ProcessLost: If the worker exited before producing a result
        """
        if not file_path or "\n" in file_path or "\r" in file_path:
            raise InvalidPayload()

        if not self.supervisor.is_running():
            raise ProcessUnavailable()

        pending = self.gate.admit(file_path)
        # A late result may be half-printed; keep its tail so it still settles the debt
        self.correlator.reset(carry_partial=self._owed_results > 0)
        self._settle_carried()

        logger.info(f"Sending path to whisper service: {file_path}")
        try:
            self.supervisor.write_line(file_path)
        except ProcessUnavailable as e:
            self.gate.fail(pending.token, e)

        try:
            result = await pending.future
        except WorkerBridgeError:
            self.failed += 1
            raise

        self.completed += 1
        return result

    def _on_output(self, chunk: bytes) -> None:
        payload = self.correlator.feed(chunk)
        self._settle_carried()
        while payload is not None:
            self._dispatch(payload)
            payload = self.correlator.extract()

        if self.gate.pending is None:
            self.correlator.compact()

    def _settle_carried(self) -> None:
        carried = self.correlator.pop_carried_results()
        if carried:
            self._owed_results = max(0, self._owed_results - carried)
            logger.warning(
                f"Dropped {carried} late result(s) printed across a request boundary"
            )

    def _dispatch(self, payload: str) -> None:
        pending = self.gate.pending

        if self._owed_results > 0:
            self._owed_results -= 1
            if pending is None or self.discard_late_results:
                logger.warning(
                    f"Dropping late result from a timed-out request: {payload!r}"
                )
                return
            logger.warning(
                f"Result for request {pending.token} may belong to an earlier timed-out request"
            )

        if pending is None:
            logger.warning(f"Dropping result with no pending request: {payload!r}")
            return

        self.gate.resolve(
            pending.token,
            RecognitionResult(file_path=pending.file_path, recognition=payload),
        )

    def _on_exit(self, returncode: Optional[int]) -> None:
        self._owed_results = 0
        self.correlator.drop_carry()
        self.gate.fail_all(ProcessLost(f"Whisper service exited with code {returncode}."))

    def _on_timeout(self, pending: PendingRequest) -> None:
        self._owed_results += 1

    def status(self) -> Dict[str, Any]:
        """Worker and request status for the health endpoint."""
        pending = self.gate.pending
        return {
            "worker": self.supervisor.status(),
            "busy": pending is not None,
            "pending_file_path": pending.file_path if pending else None,
            "completed": self.completed,
            "failed": self.failed,
            "timed_out": self.gate.timed_out,
            "owed_results": self._owed_results,
        }


# Global orchestrator instance
_orchestrator: Optional[WorkerOrchestrator] = None


def get_orchestrator() -> WorkerOrchestrator:
    """
    Get or create the global WorkerOrchestrator.

    Returns:
        Global orchestrator instance
    """
    global _orchestrator
    if _orchestrator is None:
        supervisor = WorkerSupervisor(
            executable=config.get_worker_executable(),
            args=config.get_worker_args(),
            cwd=config.get_worker_cwd(),
            restart_delay=config.RESTART_DELAY_MS / 1000,
        )
        _orchestrator = WorkerOrchestrator(
            supervisor=supervisor,
            gate=RequestGate(request_timeout=config.REQUEST_TIMEOUT_MS / 1000),
            discard_late_results=config.get_discard_late_results(),
        )
    return _orchestrator

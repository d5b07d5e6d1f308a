from __future__ import annotations

import asyncio

import pytest

from whisper_bridge.worker.correlator import OutputCorrelator
from whisper_bridge.worker.errors import (
    Busy,
    InvalidPayload,
    ProcessLost,
    ProcessUnavailable,
    RequestTimeout,
)
from whisper_bridge.worker.gate import RequestGate
from whisper_bridge.worker.orchestrator import WorkerOrchestrator
from whisper_bridge.worker.protocol import RecognitionResult


class _FakeSupervisor:
    def __init__(self, events: list[str] | None = None, running: bool = True):
        self.running = running
        self.fail_writes = False
        self.lines: list[str] = []
        self.events = events if events is not None else []
        self.on_output = None
        self.on_exit = None

    def is_running(self) -> bool:
        return self.running

    def write_line(self, text: str) -> None:
        if not self.running or self.fail_writes:
            raise ProcessUnavailable()
        self.events.append(f"write:{text}")
        self.lines.append(text)

    def emit(self, data: bytes) -> None:
        self.on_output(data)

    def crash(self, code: int = 1) -> None:
        self.running = False
        self.on_exit(code)

    def status(self) -> dict:
        return {"state": "running" if self.running else "restarting"}


class _RecordingCorrelator(OutputCorrelator):
    def __init__(self, events: list[str]):
        super().__init__()
        self.events = events

    def reset(self, carry_partial: bool = False) -> None:
        self.events.append("reset")
        super().reset(carry_partial=carry_partial)


def _orchestrator(timeout: float = 10, discard_late_results: bool = True):
    events: list[str] = []
    supervisor = _FakeSupervisor(events)
    orchestrator = WorkerOrchestrator(
        supervisor=supervisor,
        gate=RequestGate(request_timeout=timeout),
        correlator=_RecordingCorrelator(events),
        discard_late_results=discard_late_results,
    )
    return orchestrator, supervisor, events


def test_round_trip_returns_recognized_text() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        task = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)

        assert supervisor.lines == ["/tmp/a.wav"]
        supervisor.emit(b"Processing /tmp/a.wav\n")
        supervisor.emit(b"Result: hello world\n")

        assert await task == RecognitionResult(file_path="/tmp/a.wav", recognition="hello world")
        assert not orchestrator.gate.busy
        assert orchestrator.completed == 1

    asyncio.run(scenario())


def test_reset_happens_once_and_before_write() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, events = _orchestrator()
        for path in ("/tmp/a.wav", "/tmp/b.wav"):
            task = asyncio.create_task(orchestrator.handle(path))
            await asyncio.sleep(0)
            supervisor.emit(b"Result: ok\n")
            await task

        assert events == ["reset", "write:/tmp/a.wav", "reset", "write:/tmp/b.wav"]

    asyncio.run(scenario())


def test_unavailable_worker_creates_no_request() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, events = _orchestrator()
        supervisor.running = False

        with pytest.raises(ProcessUnavailable):
            await orchestrator.handle("/tmp/a.wav")

        assert not orchestrator.gate.busy
        assert events == []

    asyncio.run(scenario())


def test_busy_does_not_change_first_outcome() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        first = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)

        with pytest.raises(Busy):
            await orchestrator.handle("/tmp/b.wav")

        assert supervisor.lines == ["/tmp/a.wav"]
        supervisor.emit(b"Result: first\n")
        assert (await first).recognition == "first"

    asyncio.run(scenario())


def test_timeout_frees_gate_for_next_request() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05)

        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/silent.wav")

        assert not orchestrator.gate.busy
        assert orchestrator.owed_results == 1

        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        assert orchestrator.gate.busy

    asyncio.run(scenario())


def test_worker_exit_fails_pending_request() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        task = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)

        supervisor.crash(code=139)

        with pytest.raises(ProcessLost):
            await task
        assert not orchestrator.gate.busy
        assert orchestrator.failed == 1

    asyncio.run(scenario())


def test_write_failure_releases_gate() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        supervisor.fail_writes = True

        with pytest.raises(ProcessUnavailable):
            await orchestrator.handle("/tmp/a.wav")

        assert not orchestrator.gate.busy

    asyncio.run(scenario())


@pytest.mark.parametrize("payload", ["", "/tmp/a.wav\n/tmp/b.wav", "/tmp/a.wav\r"])
def test_invalid_payload_is_rejected(payload: str) -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()

        with pytest.raises(InvalidPayload):
            await orchestrator.handle(payload)

        assert supervisor.lines == []

    asyncio.run(scenario())


def test_late_result_is_not_attributed_to_next_request() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05)
        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/a.wav")

        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b"Result: text of a\n")
        assert not task.done()

        supervisor.emit(b"Result: text of b\n")
        assert (await task).recognition == "text of b"
        assert orchestrator.owed_results == 0

    asyncio.run(scenario())


def test_late_result_goes_to_next_request_when_discard_disabled() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05, discard_late_results=False)
        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/a.wav")

        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b"Result: text of a\n")

        assert (await task).recognition == "text of a"

    asyncio.run(scenario())


def test_late_result_while_idle_settles_the_debt() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05)
        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/a.wav")

        supervisor.emit(b"Result: text of a\n")
        assert orchestrator.owed_results == 0

        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b"Result: text of b\n")
        assert (await task).recognition == "text of b"

    asyncio.run(scenario())


def test_late_result_split_across_next_admission_settles_the_debt() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05)
        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/a.wav")

        supervisor.emit(b"Result: text of")

        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b" a\n")
        assert not task.done()
        assert orchestrator.owed_results == 0

        supervisor.emit(b"Result: text of b\n")
        assert (await task).recognition == "text of b"

        for path in ("/tmp/c.wav", "/tmp/d.wav"):
            task = asyncio.create_task(orchestrator.handle(path))
            await asyncio.sleep(0)
            supervisor.emit(f"Result: text of {path}\n".encode())
            assert (await task).recognition == f"text of {path}"

        assert orchestrator.owed_results == 0
        assert orchestrator.gate.timed_out == 1

    asyncio.run(scenario())


def test_partial_line_is_not_carried_without_debt() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        supervisor.emit(b"Result: stray")

        task = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b" tail\nResult: text of a\n")

        assert (await task).recognition == "text of a"

    asyncio.run(scenario())


def test_idle_output_does_not_accumulate() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        supervisor.emit(b"whisper service ready\nwaiting for input\n")
        assert orchestrator.correlator.buffer == ""

        supervisor.emit(b"still waiting\npart")
        assert orchestrator.correlator.buffer == "part"

        task = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b"Processing /tmp/a.wav\n")
        assert orchestrator.correlator.buffer == "Processing /tmp/a.wav\n"

        supervisor.emit(b"Result: text of a\nInference time: 5 ms\n")
        await task
        assert orchestrator.correlator.buffer == ""

    asyncio.run(scenario())


def test_worker_exit_clears_owed_results() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator(timeout=0.05)
        with pytest.raises(RequestTimeout):
            await orchestrator.handle("/tmp/a.wav")

        supervisor.crash()
        supervisor.running = True

        assert orchestrator.owed_results == 0
        task = asyncio.create_task(orchestrator.handle("/tmp/b.wav"))
        await asyncio.sleep(0)
        supervisor.emit(b"Result: text of b\n")
        assert (await task).recognition == "text of b"

    asyncio.run(scenario())


def test_status_reports_pending_request() -> None:
    async def scenario() -> None:
        orchestrator, supervisor, _ = _orchestrator()
        task = asyncio.create_task(orchestrator.handle("/tmp/a.wav"))
        await asyncio.sleep(0)

        status = orchestrator.status()
        assert status["busy"] is True
        assert status["pending_file_path"] == "/tmp/a.wav"
        assert status["worker"] == {"state": "running"}

        supervisor.emit(b"Result: done\n")
        await task
        assert orchestrator.status()["completed"] == 1

    asyncio.run(scenario())

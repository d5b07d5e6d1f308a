"""WorkerSupervisor - owns the long-running whisper process.

Responsibilities:
- Spawn the worker with its stdin/stdout/stderr piped
- Forward stdout chunks, in order, to a single consumer
- Detect exit and restart after a fixed delay
- Retry failed spawns on the same schedule
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .errors import ProcessUnavailable
from .protocol import WorkerHandle, WorkerState

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


class WorkerSupervisor:
    """
    Supervises exactly one worker process at a time.

    State machine: stopped -> starting -> running -> restarting -> starting ...
    Any exit of the worker, whatever its code, triggers a restart after
    ``restart_delay`` seconds. Spawn failures are logged and retried on the
    same delay, so the supervisor never gives up while it is not stopped.
    """

    def __init__(
        self,
        executable: Union[str, Path],
        args: Optional[List[str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        restart_delay: float = 1.0,
        env: Optional[Dict[str, str]] = None,
        on_output: Optional[Callable[[bytes], None]] = None,
        on_exit: Optional[Callable[[Optional[int]], None]] = None,
        stop_timeout: float = 5.0,
    ):
        """
        Initialize supervisor.

        Args:
            executable: Path to the worker binary
            args: Extra command line arguments for the worker
            cwd: Working directory the worker runs in
            restart_delay: Seconds between an exit (or failed spawn) and the next spawn
            env: Extra environment variables for the worker
            on_output: Called with every stdout chunk, in arrival order
            on_exit: Called with the exit code whenever the worker exits
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL
        """
        self.executable = executable
        self.args = list(args or [])
        self.cwd = cwd
        self.restart_delay = restart_delay
        self.env = env or {}
        self.on_output = on_output
        self.on_exit = on_exit
        self.stop_timeout = stop_timeout

        self._handle: Optional[WorkerHandle] = None
        self._state = WorkerState.STOPPED
        self._stopping = False
        self._restart_timer: Optional[asyncio.TimerHandle] = None
        self._spawn_task: Optional[asyncio.Task] = None

        self.restart_count = 0
        self.last_exit_code: Optional[int] = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def handle(self) -> Optional[WorkerHandle]:
        """Current worker handle. Replaced on every restart."""
        return self._handle

    def is_running(self) -> bool:
        """Check if a live worker is available for writes."""
        handle = self._handle
        return (
            self._state == WorkerState.RUNNING
            and handle is not None
            and handle.is_alive()
        )

    async def start(self) -> None:
        """Spawn the worker. Failures are logged and retried after the restart delay."""
        if self._handle is not None and self._handle.is_alive():
            logger.warning(
                f"Whisper worker already running (pid {self._handle.pid}), not starting another"
            )
            return

        self._stopping = False
        await self._spawn()

    async def _spawn(self) -> None:
        if self._stopping or self._state == WorkerState.STARTING:
            return
        if self._handle is not None and self._handle.is_alive():
            return
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

        self._state = WorkerState.STARTING

        cmd = [str(self.executable), *self.args]
        env = os.environ.copy()
        env.update(self.env)

        logger.info(f"Starting whisper worker: {' '.join(cmd)} (cwd: {self.cwd})")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            logger.error(f"Failed to start whisper worker: {e}")
            if self._stopping:
                self._state = WorkerState.STOPPED
            else:
                self._state = WorkerState.RESTARTING
                self._schedule_restart()
            return

        if self._stopping:
            # stop() ran while the spawn was in progress
            proc.terminate()
            await proc.wait()
            self._state = WorkerState.STOPPED
            return

        handle = WorkerHandle(proc=proc)
        self._handle = handle
        self._state = WorkerState.RUNNING
        handle.monitor_task = asyncio.create_task(self._monitor(handle))
        logger.info(f"Whisper worker started (pid {handle.pid})")

    def write_line(self, text: str) -> None:
        """
        Write one line to the worker's stdin.

        Args:
            text: Line content, without trailing newline

        Raises:
            ProcessUnavailable: If there is no live worker to write to
        """
        if not self.is_running():
            raise ProcessUnavailable()

        stdin = self._handle.proc.stdin
        if stdin is None or stdin.is_closing():
            raise ProcessUnavailable()

        try:
            stdin.write(f"{text}\n".encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessUnavailable(f"Failed to write to whisper worker: {e}") from e

    async def _monitor(self, handle: WorkerHandle) -> None:
        """Pump the worker's output until EOF, then handle its exit."""
        stderr_task = asyncio.create_task(self._pump_stderr(handle))

        stdout = handle.proc.stdout
        while True:
            chunk = await stdout.read(CHUNK_SIZE)
            if not chunk:
                break
            logger.debug(f"[Whisper STDOUT]: {chunk.decode('utf-8', errors='replace').rstrip()}")
            if self.on_output is not None:
                try:
                    self.on_output(chunk)
                except Exception as e:
                    logger.error(f"Output consumer failed: {e}", exc_info=True)

        returncode = await handle.proc.wait()
        await stderr_task
        self._handle_exit(handle, returncode)

    async def _pump_stderr(self, handle: WorkerHandle) -> None:
        stderr = handle.proc.stderr
        while True:
            chunk = await stderr.read(CHUNK_SIZE)
            if not chunk:
                return
            logger.warning(f"[Whisper STDERR]: {chunk.decode('utf-8', errors='replace').rstrip()}")

    def _handle_exit(self, handle: WorkerHandle, returncode: Optional[int]) -> None:
        self.last_exit_code = returncode
        if self._handle is handle:
            self._handle = None

        if self._stopping:
            self._state = WorkerState.STOPPED
            logger.info(f"Whisper worker exited with code {returncode}")
        else:
            self._state = WorkerState.RESTARTING
            logger.warning(
                f"Whisper worker exited with code {returncode}. "
                f"Restarting in {self.restart_delay}s..."
            )

        if self.on_exit is not None:
            try:
                self.on_exit(returncode)
            except Exception as e:
                logger.error(f"Exit handler failed: {e}", exc_info=True)

        if not self._stopping:
            self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._stopping or self._restart_timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._restart_timer = loop.call_later(self.restart_delay, self._restart)

    def _restart(self) -> None:
        self._restart_timer = None
        if self._stopping:
            return
        self.restart_count += 1
        self._spawn_task = asyncio.create_task(self._spawn())

    async def stop(self) -> None:
        """
        Stop the worker and cancel any pending restart.

        Sends SIGTERM, then SIGKILL if the worker does not exit in time.
        """
        self._stopping = True
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

        if self._spawn_task is not None and not self._spawn_task.done():
            await self._spawn_task

        handle = self._handle
        if handle is None:
            self._state = WorkerState.STOPPED
            return

        if handle.is_alive():
            try:
                handle.proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(handle.proc.wait(), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Whisper worker (pid {handle.pid}) ignored SIGTERM, killing")
                try:
                    handle.proc.kill()
                except ProcessLookupError:
                    pass
                await handle.proc.wait()

        if handle.monitor_task is not None:
            try:
                await asyncio.wait_for(handle.monitor_task, timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Whisper output monitor did not finish, abandoned")
                self._handle_exit(handle, handle.proc.returncode)

        self._state = WorkerState.STOPPED

    def status(self) -> Dict[str, object]:
        """Snapshot for health reporting."""
        handle = self._handle
        return {
            "state": self._state.value,
            "pid": handle.pid if handle else None,
            "uptime_seconds": round(time.time() - handle.spawned_at, 1) if handle else None,
            "restart_count": self.restart_count,
            "last_exit_code": self.last_exit_code,
            "executable": str(self.executable),
        }

"""Application configuration for the whisper worker and HTTP server."""

import os
import shlex
from pathlib import Path
from typing import List

# Fixed protocol timings
RESTART_DELAY_MS = 1000
REQUEST_TIMEOUT_MS = 120000

DEFAULT_PORT = 8801


def get_whisper_root() -> Path:
    """
    Get the root of the whisper C++ project.

    Checks WHISPER_ROOT first, then falls back to the directory above this
    project, where the whisper binary is built.
    """
    if env_root := os.getenv("WHISPER_ROOT"):
        return Path(env_root)

    return Path(__file__).resolve().parent.parent.parent


def get_worker_executable() -> Path:
    """Path to the whisper executable (WHISPER_EXECUTABLE or <root>/whisper)."""
    if env_executable := os.getenv("WHISPER_EXECUTABLE"):
        return Path(env_executable)

    return get_whisper_root() / "whisper"


def get_worker_args() -> List[str]:
    """
    Extra arguments for the whisper executable in service mode.

    WHISPER_ARGS is split with shell rules, e.g.
    ``--encoder ./models/small-encoder.axmodel``.
    """
    return shlex.split(os.getenv("WHISPER_ARGS", ""))


def get_worker_cwd() -> Path:
    """Working directory for the worker (WHISPER_WORKDIR or the whisper root)."""
    if env_workdir := os.getenv("WHISPER_WORKDIR"):
        return Path(env_workdir)

    return get_whisper_root()


def get_discard_late_results() -> bool:
    """
    Whether results owed by timed-out requests are dropped instead of being
    handed to the next request.
    """
    return os.getenv("WHISPER_DISCARD_LATE_RESULTS", "true").strip().lower() not in {
        "0",
        "false",
        "no",
        "off",
    }


def get_host() -> str:
    return os.getenv("WHISPER_HOST", "0.0.0.0")


def get_port() -> int:
    return int(os.getenv("WHISPER_PORT", str(DEFAULT_PORT)))


def get_log_level() -> str:
    return os.getenv("WHISPER_LOG_LEVEL", "INFO").upper()

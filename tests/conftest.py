from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

FAKE_WHISPER = Path(__file__).parent / "support" / "fake_whisper.py"


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_whisper_cmd() -> tuple[str, list[str]]:
    """Executable and args that run the fake whisper service."""
    return sys.executable, ["-u", str(FAKE_WHISPER)]


@pytest.fixture
def waiter():
    return wait_until

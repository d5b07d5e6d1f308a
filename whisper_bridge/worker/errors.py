"""Failures a recognition request can end in."""

from __future__ import annotations


class WorkerBridgeError(Exception):
    """Base class for request failures, each with a stable code."""

    code = "WORKER_ERROR"
    default_message = "Worker request failed."

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)


class ProcessUnavailable(WorkerBridgeError):
    code = "PROCESS_UNAVAILABLE"
    default_message = "Whisper service is not running."


class Busy(WorkerBridgeError):
    code = "BUSY"
    default_message = "Service is busy. Please try again later."


class RequestTimeout(WorkerBridgeError):
    code = "TIMEOUT"
    default_message = "Request timed out."


class ProcessLost(WorkerBridgeError):
    code = "PROCESS_LOST"
    default_message = "Whisper service exited while processing the request."


class InvalidPayload(WorkerBridgeError):
    code = "INVALID_PAYLOAD"
    default_message = "File path must be a non-empty single line."

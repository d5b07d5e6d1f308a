"""Bridge from HTTP requests to a long-running whisper worker process."""

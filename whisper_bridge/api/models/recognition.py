"""Pydantic models for the speech recognition API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RecognitionRequest(BaseModel):
    """Request to recognize speech in a file the worker can read."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: Optional[str] = Field(
        None,
        alias="filePath",
        description="Path of the audio file, as seen by the whisper worker",
    )


class RecognitionResponse(BaseModel):
    """Recognized text for the requested file."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(..., alias="filePath", description="Echo of the requested file path")
    recognition: str = Field(..., description="Text recognized by the worker")
    request_id: str = Field(..., description="Unique request identifier")
    processing_time_ms: int = Field(..., description="Time taken to process the request in milliseconds")

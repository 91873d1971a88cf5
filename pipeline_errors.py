"""
Error types raised by the audio notes pipeline.

Every stage raises one of these with enough context for the caller to tell
where the run failed and what to try next. Nothing in the pipeline retries
on these errors; they are meant to reach the top-level caller.
"""

import re
from enum import Enum
from typing import Optional


class PipelineError(Exception):
    """Base class for fatal pipeline errors."""

    stage = "pipeline"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"[{self.stage}] {self.message}\n{self.hint}"
        return f"[{self.stage}] {self.message}"


class MediaProcessingError(PipelineError):
    """ffmpeg/ffprobe could not read or split the audio file."""

    stage = "chunking"

    def __init__(self, message: str, diagnostics: str = ""):
        hint = None
        if diagnostics:
            hint = f"Output from ffmpeg:\n{diagnostics.strip()}"
        super().__init__(message, hint)
        self.diagnostics = diagnostics


class TranscriptionFailure(Enum):
    CONNECTIVITY = "connectivity"
    UNSUPPORTED_FORMAT = "unsupported_format"
    GENERIC = "generic"


TRANSCRIPTION_HINTS = {
    TranscriptionFailure.CONNECTIVITY: (
        "If the error mentions a connection error, check that billing details are "
        "set up on your OpenAI account, then generate a new API key and set it as "
        "OPENAI_API_KEY before running again."
    ),
    TranscriptionFailure.UNSUPPORTED_FORMAT: (
        "The transcription service could not read this audio format. Some apps "
        "write .m4a files the service rejects; convert the file to .mp3 and try again."
    ),
    TranscriptionFailure.GENERIC: (
        "Transcription failed while sending the audio chunks. Re-run with --debug "
        "for the full request log."
    ),
}


class TranscriptionError(PipelineError):
    """A chunk could not be transcribed, either after retries or immediately."""

    stage = "transcription"

    def __init__(
        self,
        message: str,
        kind: TranscriptionFailure = TranscriptionFailure.GENERIC,
    ):
        super().__init__(message, TRANSCRIPTION_HINTS[kind])
        self.kind = kind

    @classmethod
    def from_exception(
        cls, exc: BaseException, chunk_name: str = ""
    ) -> "TranscriptionError":
        """Build an error whose kind is picked from the underlying failure text."""
        detail = str(exc)
        if re.search(r"connection error", detail, re.IGNORECASE):
            kind = TranscriptionFailure.CONNECTIVITY
        elif re.search(r"invalid file format", detail, re.IGNORECASE):
            kind = TranscriptionFailure.UNSUPPORTED_FORMAT
        else:
            kind = TranscriptionFailure.GENERIC

        where = f" for {chunk_name}" if chunk_name else ""
        return cls(f"Transcription failed{where}: {detail}", kind)


class StitchingError(PipelineError):
    stage = "stitching"


class CompletionError(PipelineError):
    """The completion provider failed for one segment."""

    stage = "completion"

    def __init__(self, message: str, segment_index: Optional[int] = None):
        super().__init__(message)
        self.segment_index = segment_index


class UnrepairableOutputError(PipelineError):
    """Model output could not be coerced into a JSON object."""

    stage = "repair"

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(
            message,
            "The model did not return JSON. Try again, or use a model that "
            "follows the JSON instructions more reliably.",
        )
        self.raw_text = raw_text

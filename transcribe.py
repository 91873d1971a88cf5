"""
Transcribe audio chunks concurrently and stitch the results into one transcript.

Each chunk is sent to a transcription provider in its own task. Transient
failures (dropped connections, server errors) are retried with exponential
backoff; anything else fails the run immediately. Fragments are put back in
chunk order before stitching, whatever order they finished in.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, List, Mapping, Optional, Sequence, Union

from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from chunk_audio import AudioChunk
from pipeline_config import DEFAULT_TRANSCRIPTION_PROMPT
from pipeline_errors import PipelineError, StitchingError, TranscriptionError

RETRYABLE_MESSAGE = re.compile(r"econnreset|connection error|timed out", re.IGNORECASE)


@dataclass
class TranscriptFragment:
    """Transcribed text of a single audio chunk."""

    sequence_index: int
    text: str


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class RateLimitInfo:
    """Rate limit state reported alongside a transcription response."""

    request_limit: Optional[int] = None
    token_limit: Optional[int] = None
    remaining_requests: Optional[int] = None
    remaining_tokens: Optional[int] = None
    reset_requests_in: Optional[str] = None
    reset_tokens_in: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateLimitInfo":
        return cls(
            request_limit=_parse_int(headers.get("x-ratelimit-limit-requests")),
            token_limit=_parse_int(headers.get("x-ratelimit-limit-tokens")),
            remaining_requests=_parse_int(headers.get("x-ratelimit-remaining-requests")),
            remaining_tokens=_parse_int(headers.get("x-ratelimit-remaining-tokens")),
            reset_requests_in=headers.get("x-ratelimit-reset-requests"),
            reset_tokens_in=headers.get("x-ratelimit-reset-tokens"),
        )

    @property
    def nearly_exhausted(self) -> bool:
        return self.remaining_requests is not None and self.remaining_requests <= 1


@dataclass
class TranscriptionResponse:
    text: str
    rate_limit: RateLimitInfo


class OpenAITranscriptionProvider:
    """Transcription provider backed by the OpenAI audio transcription endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1"):
        self.client = client
        self.model = model

    async def transcribe(
        self, audio_file: BinaryIO, prompt: Optional[str] = None
    ) -> TranscriptionResponse:
        params = {"model": self.model, "file": audio_file}
        if prompt:
            params["prompt"] = prompt

        # Raw response so the rate limit headers are available
        raw = await self.client.audio.transcriptions.with_raw_response.create(**params)
        transcription = raw.parse()
        return TranscriptionResponse(
            text=transcription.text,
            rate_limit=RateLimitInfo.from_headers(raw.headers),
        )


class ErrorDisposition(Enum):
    RETRY = "retry"
    BAIL = "bail"


def classify_error(error: BaseException) -> ErrorDisposition:
    """
    Decide whether a failed transcription request is worth retrying.

    Connection failures, resets, timeouts, rate limiting (429) and 5xx
    responses are transient. Everything else (bad input, other 4xx responses)
    will fail again the same way.

    Args:
        error: Exception raised by the provider

    Returns:
        ErrorDisposition: RETRY for transient failures, BAIL otherwise
    """
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return ErrorDisposition.RETRY
    if RETRYABLE_MESSAGE.search(str(error)):
        return ErrorDisposition.RETRY
    return ErrorDisposition.BAIL


def is_retryable_error(error: BaseException) -> bool:
    return classify_error(error) is ErrorDisposition.RETRY


def log_rate_limits(chunk_name: str, rate_limit: RateLimitInfo) -> None:
    logging.debug(
        f"Rate limits after {chunk_name}: "
        f"requests {rate_limit.remaining_requests}/{rate_limit.request_limit} "
        f"(reset in {rate_limit.reset_requests_in}), "
        f"tokens {rate_limit.remaining_tokens}/{rate_limit.token_limit} "
        f"(reset in {rate_limit.reset_tokens_in})"
    )
    if rate_limit.nearly_exhausted:
        logging.warning(
            f"Only {rate_limit.remaining_requests} transcription request(s) left in the "
            "current rate limit window. Later requests may be rate limited and retried, "
            "which can push the run past its time limit. Trial API keys have much lower "
            "limits than keys on a paid account."
        )


async def transcribe_chunk(
    chunk: AudioChunk,
    provider,
    prompt: Optional[str] = DEFAULT_TRANSCRIPTION_PROMPT,
    max_attempts: int = 3,
    wait: Optional[wait_base] = None,
) -> TranscriptFragment:
    """
    Transcribe a single audio chunk, retrying transient failures.

    Args:
        chunk: Audio chunk to transcribe
        provider: Transcription provider (see OpenAITranscriptionProvider)
        prompt: Context or guidance for transcription
        max_attempts: Total attempts including the first one
        wait: tenacity wait strategy between attempts

    Returns:
        TranscriptFragment: Text for this chunk

    Raises:
        TranscriptionError: If retries are exhausted or the error is not retryable
    """
    chunk_name = chunk.path.name
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logging.getLogger(), logging.WARNING),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                logging.info(f"Transcribing {chunk_name}")
                with open(chunk.path, "rb") as audio_file:
                    response = await provider.transcribe(audio_file, prompt)
    except PipelineError:
        raise
    except Exception as e:
        if is_retryable_error(e):
            logging.error(f"Giving up on {chunk_name} after {max_attempts} attempts: {e}")
        else:
            logging.error(f"Error that won't be helped by retrying on {chunk_name}: {e}")
        raise TranscriptionError.from_exception(e, chunk_name) from e

    log_rate_limits(chunk_name, response.rate_limit)
    return TranscriptFragment(sequence_index=chunk.sequence_index, text=response.text)


async def transcribe_all(
    chunks: Sequence[AudioChunk],
    provider,
    prompt: Optional[str] = DEFAULT_TRANSCRIPTION_PROMPT,
    max_attempts: int = 3,
    max_concurrent: Optional[int] = None,
    wait: Optional[wait_base] = None,
) -> List[TranscriptFragment]:
    """
    Transcribe all chunks concurrently.

    Args:
        chunks: Audio chunks from split_audio
        provider: Transcription provider
        prompt: Context or guidance for transcription
        max_attempts: Attempts per chunk
        max_concurrent: Maximum requests in flight (None for no limit)
        wait: tenacity wait strategy between attempts

    Returns:
        List[TranscriptFragment]: Fragments ordered by sequence_index

    Raises:
        TranscriptionError: On the first chunk that fails; other requests are cancelled
    """
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def run(chunk: AudioChunk) -> TranscriptFragment:
        if semaphore is None:
            return await transcribe_chunk(chunk, provider, prompt, max_attempts, wait)
        async with semaphore:
            return await transcribe_chunk(chunk, provider, prompt, max_attempts, wait)

    logging.info(f"Transcribing {len(chunks)} chunk(s)")
    tasks = [asyncio.ensure_future(run(chunk)) for chunk in chunks]
    try:
        fragments = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise

    return sorted(fragments, key=lambda fragment: fragment.sequence_index)


def stitch_fragments(fragments: Sequence[Union[TranscriptFragment, str]]) -> str:
    """
    Combine ordered transcript fragments into one transcript.

    A chunk boundary often falls mid-sentence, and the transcriber then ends
    the fragment with a period anyway. When a fragment ends with "." and the
    next one starts lowercase (ignoring leading whitespace), that period is
    dropped. Fragments are joined
    with a single space.

    Args:
        fragments: Fragments (or plain strings already in order)

    Returns:
        str: The full transcript

    Raises:
        StitchingError: If the fragments cannot be combined
    """
    logging.info(f"Combining {len(fragments)} transcript fragments")
    try:
        if all(isinstance(f, TranscriptFragment) for f in fragments):
            texts = [f.text for f in sorted(fragments, key=lambda f: f.sequence_index)]
        else:
            texts = [f.text if isinstance(f, TranscriptFragment) else f for f in fragments]

        combined = []
        for i, text in enumerate(texts):
            if i < len(texts) - 1:
                next_text = texts[i + 1]
                if text.endswith(".") and next_text.lstrip()[:1].islower():
                    text = text[:-1]
                text += " "
            combined.append(text)

        return "".join(combined)
    except Exception as e:
        raise StitchingError(f"Could not combine transcript fragments: {e}") from e

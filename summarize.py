"""
Split a transcript into token-bounded segments and run each through a chat model.

Segments never break a sentence. Each segment gets its own multi-turn
exchange: when the model stops because it ran out of output tokens, it is
asked to continue, and the pieces are concatenated.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, List, Optional, Sequence

import tiktoken
from openai import AsyncOpenAI

from pipeline_errors import CompletionError, PipelineError

SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+\Z")

TokenCounter = Callable[[str], int]


@lru_cache(maxsize=None)
def _encoding_for(model: str):
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        # Fallback to a common encoding if model not found
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, model: str = "gpt-4o") -> int:
    """
    Count tokens in text using tiktoken.

    Args:
        text: Text to count tokens for
        model: Model name for encoding selection

    Returns:
        int: Number of tokens in the text
    """
    return len(_encoding_for(model).encode(text))


@dataclass
class TextSegment:
    index: int
    text: str
    estimated_token_count: int


def split_into_sentences(text: str) -> List[str]:
    """
    Split text into sentences ending in '.', '!' or '?'.

    Whitespace stays attached to the sentence that follows it, and trailing
    text without terminal punctuation becomes a final sentence, so joining the
    result gives back the input unchanged.
    """
    return SENTENCE_PATTERN.findall(text)


def _split_evenly(items: List[str], pieces: int) -> List[List[str]]:
    size, extra = divmod(len(items), pieces)
    result = []
    start = 0
    for i in range(pieces):
        end = start + size + (1 if i < extra else 0)
        result.append(items[start:end])
        start = end
    return result


def split_into_segments(
    text: str,
    max_tokens_per_segment: int = 3000,
    token_counter: TokenCounter = count_tokens,
) -> List[TextSegment]:
    """
    Split text into segments of at most max_tokens_per_segment tokens.

    Sentences are first dealt out evenly (by count) into the minimum number of
    groups the token total allows. A group over budget hands its last sentence
    to the next group until it fits. The last group has nowhere to hand
    sentences to, so it is cut into len(group) - 1 pieces instead (at least two,
    so a two-sentence group becomes two single sentences); those pieces are not
    re-checked and can still be over budget. A single sentence longer
    than the budget is passed through as is.

    Args:
        text: Text to split
        max_tokens_per_segment: Token budget per segment
        token_counter: Callable returning the token count of a string

    Returns:
        List[TextSegment]: Segments in text order
    """
    if max_tokens_per_segment <= 0:
        raise ValueError(
            f"max_tokens_per_segment must be positive, got {max_tokens_per_segment}"
        )

    sentences = split_into_sentences(text)
    if not text.strip() or not sentences:
        return []

    total_tokens = token_counter(text)
    min_segments = max(1, math.ceil(total_tokens / max_tokens_per_segment))
    group_size = math.ceil(len(sentences) / min_segments)
    groups = [sentences[i : i + group_size] for i in range(0, len(sentences), group_size)]
    logging.info(
        f"Total transcript tokens: {total_tokens}. Initial segment count: {len(groups)}"
    )

    finished: List[str] = []
    for index, group in enumerate(groups):
        is_last = index == len(groups) - 1
        pieces = [group]
        while token_counter("".join(group)) > max_tokens_per_segment:
            if is_last:
                pieces = _split_evenly(group, min(len(group), max(len(group) - 1, 2)))
                break
            groups[index + 1].insert(0, group.pop())
        finished.extend("".join(piece) for piece in pieces if piece)

    segments = [
        TextSegment(index=i, text=segment_text, estimated_token_count=token_counter(segment_text))
        for i, segment_text in enumerate(finished)
    ]
    for segment in segments:
        if segment.estimated_token_count > max_tokens_per_segment:
            logging.warning(
                f"Segment {segment.index + 1} has {segment.estimated_token_count} tokens, "
                f"over the budget of {max_tokens_per_segment}"
            )

    logging.info(f"Split transcript into {len(segments)} segment(s)")
    return segments


@dataclass
class CompletionTurn:
    role: str
    content: str

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


class StopReason(Enum):
    STOP = "stop"
    CONTINUE = "continue"


@dataclass
class CompletionReply:
    content: str
    stop_reason: StopReason


class CompletionState(Enum):
    AWAITING_REPLY = "awaiting_reply"
    CONTINUING = "continuing"
    DONE = "done"


@dataclass
class SummaryContext:
    """Per-run values every segment request needs."""

    document_type: str
    date: str
    system_prompt: str


class OpenAICompletionProvider:
    """Completion provider backed by OpenAI chat completions."""

    def __init__(
        self, client: AsyncOpenAI, model: str = "gpt-4.1-nano", temperature: float = 0.2
    ):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def complete(self, turns: Sequence[CompletionTurn]) -> CompletionReply:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[turn.to_message() for turn in turns],
            temperature=self.temperature,
        )
        choice = response.choices[0]
        # "length" means the reply was cut off and can be continued
        stop_reason = (
            StopReason.CONTINUE if choice.finish_reason == "length" else StopReason.STOP
        )
        return CompletionReply(content=choice.message.content or "", stop_reason=stop_reason)


def build_initial_turns(segment: TextSegment, context: SummaryContext) -> List[CompletionTurn]:
    return [
        CompletionTurn("system", context.system_prompt),
        CompletionTurn("user", f"Now: {context.date}\nPrompt:{segment.text}"),
    ]


async def complete_segment(
    segment: TextSegment,
    context: SummaryContext,
    provider,
    max_turns: int = 10,
) -> str:
    """
    Run one segment through the completion provider until it reports a final stop.

    Args:
        segment: Segment to send
        context: System prompt and date for this run
        provider: Completion provider (see OpenAICompletionProvider)
        max_turns: Maximum number of replies to request

    Returns:
        str: All replies concatenated in turn order

    Raises:
        CompletionError: If the provider fails or max_turns is exceeded
    """
    turns = build_initial_turns(segment, context)
    outputs: List[str] = []
    state = CompletionState.AWAITING_REPLY

    while state is not CompletionState.DONE:
        if len(outputs) >= max_turns:
            raise CompletionError(
                f"Segment {segment.index + 1} still incomplete after {max_turns} replies",
                segment.index,
            )

        logging.debug(f"Segment {segment.index + 1}: requesting reply {len(outputs) + 1}")
        try:
            reply = await provider.complete(turns)
        except PipelineError:
            raise
        except Exception as e:
            logging.error(f"Error calling completion API for segment {segment.index + 1}: {e}")
            raise CompletionError(
                f"Completion failed for segment {segment.index + 1}: {e}", segment.index
            ) from e

        turns.append(CompletionTurn("assistant", reply.content))
        outputs.append(reply.content)

        if reply.stop_reason is StopReason.CONTINUE:
            state = CompletionState.CONTINUING
            logging.debug(f"Segment {segment.index + 1}: reply truncated, continuing")
        else:
            state = CompletionState.DONE

    logging.debug(f"Segment {segment.index + 1} completed in {len(outputs)} reply(ies)")
    return "".join(outputs)


async def complete_all_segments(
    segments: Sequence[TextSegment],
    context: SummaryContext,
    provider,
    max_concurrent: Optional[int] = None,
    max_turns: int = 10,
) -> List[str]:
    """
    Complete every segment concurrently.

    Returns:
        List[str]: Raw outputs in segment order

    Raises:
        CompletionError: On the first segment that fails; the rest are cancelled
    """
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def run(segment: TextSegment) -> str:
        if semaphore is None:
            return await complete_segment(segment, context, provider, max_turns)
        async with semaphore:
            return await complete_segment(segment, context, provider, max_turns)

    logging.info(f"Processing {len(segments)} segment(s) as '{context.document_type}'")
    tasks = [asyncio.ensure_future(run(segment)) for segment in segments]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise

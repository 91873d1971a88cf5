#!/usr/bin/env python3

"""
Audio Notes Pipeline

Turns a long recording into a structured summary in one command:

1. Splits the audio into chunks small enough for the transcription API
2. Transcribes all chunks concurrently and stitches them into one transcript
3. Splits the transcript into token-bounded segments and summarizes each one
4. Repairs and merges the per-segment JSON into a single summary
5. Writes the summary as markdown and JSON next to the audio file

The kind of recording (notes, lecture, day planner, journal, interview) is
taken from the file name unless --type is given.

Usage:
    # Summarize a lecture recording
    python pipeline.py "2024-03-01 lecture.mp3"

    # Force the document type and write to another directory
    python pipeline.py memo.m4a --type journal -O processed/

    # Print the merged JSON instead of writing files
    python pipeline.py interview.mp3 --json
"""

import argparse
import asyncio
import json
import logging
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from chunk_audio import split_audio
from json_results import merge_results, repair_json
from pipeline_config import PipelineConfig, load_environment, setup_logging
from pipeline_errors import PipelineError
from prompts import SYSTEM_MESSAGES, get_system_prompt
from summarize import (
    OpenAICompletionProvider,
    SummaryContext,
    TokenCounter,
    complete_all_segments,
    count_tokens,
    split_into_segments,
)
from transcribe import OpenAITranscriptionProvider, stitch_fragments, transcribe_all

DOCUMENT_TYPE_PATTERN = re.compile(r"notes|lecture|day planner|journal|interview", re.IGNORECASE)

CHECKBOX_KEYS = {"follow_up", "reminders", "action_items", "actionable_ideas"}


@dataclass
class PipelineResult:
    summary: Dict[str, Any]
    transcript: str
    document_type: str


def detect_document_type(audio_path: Path) -> str:
    """
    Pick the document type from the file name.

    Args:
        audio_path: Path to the audio file

    Returns:
        str: One of the SYSTEM_MESSAGES keys, "default" if nothing matches
    """
    match = DOCUMENT_TYPE_PATTERN.search(Path(audio_path).name)
    if not match:
        return "default"
    return match.group(0).lower().replace(" ", "_")


def format_run_date(now: Optional[datetime] = None, timezone: str = "America/Chicago") -> str:
    now = now or datetime.now(ZoneInfo(timezone))
    if now.tzinfo is not None:
        now = now.astimezone(ZoneInfo(timezone))
    return now.strftime("%Y-%m-%d_%H-%M-%S")


def build_context(
    document_type: str, now: Optional[datetime] = None, timezone: str = "America/Chicago"
) -> SummaryContext:
    return SummaryContext(
        document_type=document_type,
        date=format_run_date(now, timezone),
        system_prompt=get_system_prompt(document_type),
    )


async def summarize_transcript(
    transcript: str,
    context: SummaryContext,
    provider,
    max_tokens_per_segment: int = 3000,
    token_counter: TokenCounter = count_tokens,
    max_concurrent: Optional[int] = None,
    max_turns: int = 10,
) -> Dict[str, Any]:
    """
    Summarize a transcript into one merged JSON object.

    Args:
        transcript: Full transcript text
        context: System prompt and date for this run
        provider: Completion provider
        max_tokens_per_segment: Token budget per segment
        token_counter: Callable returning the token count of a string
        max_concurrent: Maximum completion chains in flight
        max_turns: Maximum replies per segment

    Returns:
        Dict[str, Any]: Merged summary

    Raises:
        CompletionError: If a segment cannot be completed
        UnrepairableOutputError: If a segment's output is not JSON
    """
    segments = split_into_segments(transcript, max_tokens_per_segment, token_counter)
    outputs = await complete_all_segments(
        segments, context, provider, max_concurrent=max_concurrent, max_turns=max_turns
    )
    results = [repair_json(output) for output in outputs]
    return merge_results(results)


async def run_pipeline(
    audio_path: Path,
    config: PipelineConfig,
    transcription_provider,
    completion_provider,
    document_type: Optional[str] = None,
    now: Optional[datetime] = None,
    token_counter: Optional[TokenCounter] = None,
) -> PipelineResult:
    """
    Run the whole pipeline on one audio file.

    Args:
        audio_path: Path to the audio file
        config: Pipeline settings
        transcription_provider: Provider for audio transcription
        completion_provider: Provider for chat completions
        document_type: Overrides detection from the file name
        now: Date to put in the prompt (defaults to the current time)
        token_counter: Overrides tiktoken counting for the completion model

    Returns:
        PipelineResult: Merged summary, transcript and document type

    Raises:
        PipelineError: From whichever stage failed
    """
    audio_path = Path(audio_path)
    document_type = document_type or detect_document_type(audio_path)
    context = build_context(document_type, now, config.timezone)
    logging.info(f"Processing {audio_path.name} as '{document_type}'")

    chunks = split_audio(audio_path, config.scratch_dir, config.max_chunk_size_mb)
    fragments = await transcribe_all(
        chunks,
        transcription_provider,
        prompt=config.transcription_prompt,
        max_attempts=config.transcription_attempts,
        max_concurrent=config.max_concurrent,
    )
    transcript = stitch_fragments(fragments)
    logging.info(f"Transcript has {len(transcript)} characters")

    summary = await summarize_transcript(
        transcript,
        context,
        completion_provider,
        max_tokens_per_segment=config.max_tokens_per_segment,
        token_counter=token_counter or partial(count_tokens, model=config.completion_model),
        max_concurrent=config.max_concurrent,
        max_turns=config.max_completion_turns,
    )
    return PipelineResult(summary=summary, transcript=transcript, document_type=document_type)


def title_case(key: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), key.replace("_", " "))


def format_value(key: str, value: Any) -> str:
    if isinstance(value, list):
        marker = "- [ ]" if key in CHECKBOX_KEYS else "-"
        return "\n".join(f"{marker} {item}" for item in value)
    if isinstance(value, dict):
        return "\n".join(
            f"- **{title_case(k)}**: {format_value(k, v)}" for k, v in value.items()
        )
    return str(value)


def render_markdown(summary: Dict[str, Any], transcript: str) -> str:
    """
    Render a merged summary and its transcript as markdown.

    Args:
        summary: Merged summary
        transcript: Full transcript

    Returns:
        str: Markdown document
    """
    body = {key: value for key, value in summary.items() if key != "title"}
    body["transcript"] = transcript

    parts = []
    if summary.get("title"):
        parts.append(f"# {summary['title']}\n\n")
    for key, value in body.items():
        parts.append(f"## {title_case(key)}\n{format_value(key, value)}\n\n")
    return "".join(parts)


def parse_args() -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Transcribe a long recording and summarize it into structured notes",
        epilog="""
Examples:
  %(prog)s "lecture 2024-03-01.mp3"              # Type detected from the file name
  %(prog)s memo.m4a --type journal               # Explicit document type
  %(prog)s meeting.mp3 -O processed/             # Custom output directory
  %(prog)s interview.mp3 --json                  # Print JSON to stdout
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("audio_file", help="Path to the audio file to process")
    parser.add_argument(
        "-O",
        "--output-dir",
        type=str,
        help="Output directory (default: next to the audio file)",
    )
    parser.add_argument(
        "--type",
        dest="document_type",
        choices=sorted(SYSTEM_MESSAGES),
        help="Document type (default: detected from the file name)",
    )
    parser.add_argument(
        "--prompt",
        type=str,
        help="Transcription hint (names, terminology). Defaults to DEFAULT_PROMPT from .env",
    )
    parser.add_argument(
        "--max-chunk-mb", type=float, help="Maximum audio chunk size in MB (default: 24)"
    )
    parser.add_argument(
        "--max-tokens", type=int, help="Maximum tokens per transcript segment (default: 3000)"
    )
    parser.add_argument("--scratch-dir", type=str, help="Directory for temporary audio chunks")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary and transcript as JSON to stdout instead of writing files",
    )
    parser.add_argument(
        "-f", "--force", action="store_true", help="Force overwrite existing output files"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser.parse_args()


def apply_overrides(config: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    if args.prompt:
        config.transcription_prompt = args.prompt
    if args.max_chunk_mb:
        config.max_chunk_size_mb = args.max_chunk_mb
    if args.max_tokens:
        config.max_tokens_per_segment = args.max_tokens
    if args.scratch_dir:
        config.scratch_dir = Path(args.scratch_dir)
    return config


async def main_async() -> None:
    """
    Main pipeline function.
    """
    args = parse_args()
    setup_logging(args.debug)

    audio_path = Path(args.audio_file)
    output_dir = Path(args.output_dir) if args.output_dir else audio_path.parent
    md_path = output_dir / f"{audio_path.stem}.md"
    json_path = output_dir / f"{audio_path.stem}.json"

    if not args.json and not args.force and (md_path.exists() or json_path.exists()):
        logging.warning(
            f"Output files already exist in {output_dir}. Use --force to overwrite."
        )
        return

    config = apply_overrides(PipelineConfig.from_env(), args)
    client = load_environment()

    try:
        result = await run_pipeline(
            audio_path,
            config,
            OpenAITranscriptionProvider(client, config.transcription_model),
            OpenAICompletionProvider(client, config.completion_model),
            document_type=args.document_type,
        )
    except PipelineError as e:
        logging.error(str(e))
        sys.exit(1)

    if args.json:
        print(
            json.dumps(
                {"summary": result.summary, "transcript": result.transcript},
                indent=2,
                ensure_ascii=False,
            )
        )
        return

    output_dir.mkdir(parents=True, exist_ok=True)
    with open(md_path, "w", encoding="utf-8") as f:
        f.write(render_markdown(result.summary, result.transcript))
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(
            {"summary": result.summary, "transcript": result.transcript},
            f,
            indent=2,
            ensure_ascii=False,
        )

    logging.info(f"Summary saved: {md_path}, {json_path}")


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()

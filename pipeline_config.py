"""
Configuration, logging and client setup shared by the pipeline entry points.

Settings come from a .env file / the environment and can be overridden by
command line flags.
"""

import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

DEFAULT_TRANSCRIPTION_PROMPT = "Hello, welcome to my lecture."


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        debug: Enable debug-level logging
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def load_environment() -> AsyncOpenAI:
    """
    Load environment variables from .env file and return an OpenAI client.

    Retries are handled by the pipeline itself, so the client's own retry
    loop is switched off.

    Returns:
        AsyncOpenAI: Configured client instance

    Raises:
        SystemExit: If OPENAI_API_KEY is not found in environment
    """
    load_dotenv()
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logging.error("OPENAI_API_KEY not found in environment variables")
        sys.exit(1)
    return AsyncOpenAI(api_key=api_key, max_retries=0)


def _default_scratch_dir() -> Path:
    return Path(tempfile.gettempdir()) / "chunks"


@dataclass
class PipelineConfig:
    """Tunable values for one pipeline run."""

    max_chunk_size_mb: float = 24
    max_tokens_per_segment: int = 3000
    transcription_attempts: int = 3
    transcription_prompt: Optional[str] = DEFAULT_TRANSCRIPTION_PROMPT
    transcription_model: str = "whisper-1"
    completion_model: str = "gpt-4.1-nano"
    max_concurrent: Optional[int] = 5
    max_completion_turns: int = 10
    scratch_dir: Path = field(default_factory=_default_scratch_dir)
    timezone: str = "America/Chicago"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """
        Build a config from environment variables, falling back to defaults.

        Returns:
            PipelineConfig: Settings read from the environment
        """
        load_dotenv()
        config = cls()

        if os.getenv("MAX_CHUNK_SIZE_MB"):
            config.max_chunk_size_mb = float(os.environ["MAX_CHUNK_SIZE_MB"])
        if os.getenv("MAX_SEGMENT_TOKENS"):
            config.max_tokens_per_segment = int(os.environ["MAX_SEGMENT_TOKENS"])
        if os.getenv("TRANSCRIPTION_ATTEMPTS"):
            config.transcription_attempts = int(os.environ["TRANSCRIPTION_ATTEMPTS"])
        if os.getenv("DEFAULT_PROMPT"):
            config.transcription_prompt = os.environ["DEFAULT_PROMPT"]
        if os.getenv("TRANSCRIPTION_MODEL"):
            config.transcription_model = os.environ["TRANSCRIPTION_MODEL"]
        if os.getenv("COMPLETION_MODEL"):
            config.completion_model = os.environ["COMPLETION_MODEL"]
        if os.getenv("MAX_CONCURRENT_REQUESTS"):
            config.max_concurrent = int(os.environ["MAX_CONCURRENT_REQUESTS"])
        if os.getenv("CHUNK_SCRATCH_DIR"):
            config.scratch_dir = Path(os.environ["CHUNK_SCRATCH_DIR"])
        if os.getenv("SUMMARY_TIMEZONE"):
            config.timezone = os.environ["SUMMARY_TIMEZONE"]

        return config

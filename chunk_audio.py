"""
Split an audio file into size-bounded, time-contiguous chunk files.

Files under the size limit are copied through unchanged. Larger files are cut
by time with ffmpeg's segment muxer using stream copy, so chunks keep the
source container and codec and nothing is re-encoded.
"""

import logging
import math
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pydub import AudioSegment
from pydub.utils import mediainfo_json

from pipeline_errors import MediaProcessingError

BYTES_PER_MB = 1024 * 1024
CHUNK_PREFIX = "chunk-"


@dataclass
class AudioChunk:
    """
    One slice of the source audio, in playback order.

    duration_seconds is None for the single chunk of a file under the size
    limit, which is copied through without probing.
    """

    sequence_index: int
    path: Path
    duration_seconds: Optional[float] = None


def clear_scratch_dir(output_dir: Path) -> None:
    """
    Create the scratch directory, or remove chunk files left in it by an
    earlier run. Files without the chunk prefix are never touched.

    Args:
        output_dir: Directory that holds chunk files for a single run
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    for entry in output_dir.glob(f"{CHUNK_PREFIX}*"):
        if entry.is_file():
            entry.unlink()


def probe_duration(audio_path: Path) -> float:
    """
    Get audio duration in seconds using ffprobe.

    Args:
        audio_path: Path to the audio file

    Returns:
        float: Duration in seconds

    Raises:
        MediaProcessingError: If ffprobe fails or reports no duration
    """
    try:
        info = mediainfo_json(str(audio_path))
    except (OSError, ValueError) as e:
        raise MediaProcessingError(
            f"Could not probe duration of {audio_path.name}", str(e)
        ) from e

    try:
        return float(info["format"]["duration"])
    except (KeyError, TypeError, ValueError) as e:
        raise MediaProcessingError(
            f"ffprobe reported no duration for {audio_path.name}", str(info)
        ) from e


def split_audio(
    audio_path: Path, output_dir: Path, max_chunk_size_mb: float = 24
) -> List[AudioChunk]:
    """
    Split an audio file into chunks no larger than max_chunk_size_mb.

    Args:
        audio_path: Path to the source audio file
        output_dir: Scratch directory for chunk files (cleared first)
        max_chunk_size_mb: Maximum chunk size in MB

    Returns:
        List[AudioChunk]: Chunks ordered by sequence_index

    Raises:
        MediaProcessingError: If the file is missing or ffmpeg/ffprobe fail
    """
    if max_chunk_size_mb <= 0:
        raise ValueError(f"max_chunk_size_mb must be positive, got {max_chunk_size_mb}")

    audio_path = Path(audio_path)
    output_dir = Path(output_dir)
    if not audio_path.exists():
        raise MediaProcessingError(f"Audio file not found: {audio_path}")
    if output_dir.resolve() in audio_path.resolve().parents:
        raise MediaProcessingError(
            f"Scratch directory {output_dir} contains the source audio {audio_path.name}; "
            "choose a scratch directory outside the folder that holds the recording"
        )

    clear_scratch_dir(output_dir)

    ext = audio_path.suffix
    file_size_mb = audio_path.stat().st_size / BYTES_PER_MB
    chunk_count = math.ceil(file_size_mb / max_chunk_size_mb)

    logging.info(
        f"Full file size: {file_size_mb:.2f}MB. Chunk size: {max_chunk_size_mb}MB. "
        f"Expected number of chunks: {max(chunk_count, 1)}"
    )

    if file_size_mb <= max_chunk_size_mb:
        chunk_path = output_dir / f"{CHUNK_PREFIX}000{ext}"
        shutil.copyfile(audio_path, chunk_path)
        logging.info(f"Created 1 chunk: {chunk_path}")
        return [AudioChunk(sequence_index=0, path=chunk_path)]

    total_seconds = probe_duration(audio_path)
    segment_seconds = math.ceil(total_seconds / chunk_count)

    cmd = [
        AudioSegment.converter,
        "-hide_banner",
        "-i",
        str(audio_path),
        "-f",
        "segment",
        "-segment_time",
        str(segment_seconds),
        "-c",
        "copy",
        "-loglevel",
        "error",
        str(output_dir / f"{CHUNK_PREFIX}%03d{ext}"),
    ]
    logging.debug(f"Splitting file into chunks with ffmpeg command: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise MediaProcessingError(f"Could not run ffmpeg for {audio_path.name}", str(e)) from e

    if result.returncode != 0:
        raise MediaProcessingError(
            f"ffmpeg failed to split {audio_path.name} into chunks", result.stderr
        )

    chunk_paths = sorted(output_dir.glob(f"{CHUNK_PREFIX}*{ext}"))
    if not chunk_paths:
        raise MediaProcessingError(
            f"ffmpeg produced no chunks for {audio_path.name}", result.stderr
        )

    chunks = [
        AudioChunk(
            sequence_index=index,
            path=chunk_path,
            duration_seconds=probe_duration(chunk_path),
        )
        for index, chunk_path in enumerate(chunk_paths)
    ]

    logging.info(
        f"Created {len(chunks)} chunks of about {segment_seconds}s "
        f"from {total_seconds:.1f}s of audio"
    )
    return chunks

#!/usr/bin/env python3

import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chunk_audio import (
    BYTES_PER_MB,
    AudioChunk,
    clear_scratch_dir,
    probe_duration,
    split_audio,
)
from pipeline_errors import MediaProcessingError


def make_file(path: Path, size_mb: float) -> Path:
    """Create a sparse file of the given size."""
    with open(path, "wb") as f:
        f.truncate(int(size_mb * BYTES_PER_MB))
    return path


def fake_ffmpeg(chunk_count: int, returncode: int = 0, stderr: str = ""):
    """Build a subprocess.run replacement that writes chunk files like ffmpeg would."""

    def run(cmd, **kwargs):
        pattern = Path(cmd[-1])
        if returncode == 0:
            for i in range(chunk_count):
                (pattern.parent / (pattern.name % i)).write_bytes(b"audio")
        return subprocess.CompletedProcess(cmd, returncode, "", stderr)

    return run


class TestSplitAudio(unittest.TestCase):
    """Test cases for split_audio."""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.scratch = self.test_dir / "chunks"

    def tearDown(self):
        if self.test_dir.exists():
            shutil.rmtree(self.test_dir)

    def test_small_file_is_single_identical_chunk(self):
        source = self.test_dir / "memo.mp3"
        source.write_bytes(b"ID3" + bytes(range(256)) * 10)

        with patch("chunk_audio.probe_duration") as probe, patch(
            "chunk_audio.subprocess.run"
        ) as run:
            chunks = split_audio(source, self.scratch, max_chunk_size_mb=24)

        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].sequence_index, 0)
        self.assertEqual(chunks[0].path.name, "chunk-000.mp3")
        self.assertEqual(chunks[0].path.read_bytes(), source.read_bytes())
        self.assertIsNone(chunks[0].duration_seconds)
        probe.assert_not_called()
        run.assert_not_called()

    def test_file_exactly_at_limit_is_not_split(self):
        source = make_file(self.test_dir / "memo.mp3", 2)

        with patch("chunk_audio.subprocess.run") as run:
            chunks = split_audio(source, self.scratch, max_chunk_size_mb=2)

        self.assertEqual(len(chunks), 1)
        run.assert_not_called()

    def test_large_file_split_into_two_chunks(self):
        """A 30MB, 10-minute file with a 24MB limit becomes 2 chunks."""
        source = make_file(self.test_dir / "lecture.mp3", 30)

        def durations(path):
            return 600.0 if Path(path) == source else 300.0

        with patch("chunk_audio.probe_duration", side_effect=durations), patch(
            "chunk_audio.subprocess.run", side_effect=fake_ffmpeg(2)
        ) as run:
            chunks = split_audio(source, self.scratch, max_chunk_size_mb=24)

        self.assertEqual([c.sequence_index for c in chunks], [0, 1])
        self.assertEqual(
            [c.path.name for c in chunks], ["chunk-000.mp3", "chunk-001.mp3"]
        )
        self.assertAlmostEqual(sum(c.duration_seconds for c in chunks), 600.0, places=1)

        cmd = run.call_args[0][0]
        self.assertIn("-segment_time", cmd)
        self.assertEqual(cmd[cmd.index("-segment_time") + 1], "300")
        self.assertEqual(cmd[cmd.index("-c") + 1], "copy")
        self.assertTrue(cmd[-1].endswith("chunk-%03d.mp3"))

    def test_segment_time_rounds_up(self):
        source = make_file(self.test_dir / "talk.m4a", 50)

        with patch("chunk_audio.probe_duration", return_value=1000.5), patch(
            "chunk_audio.subprocess.run", side_effect=fake_ffmpeg(3)
        ) as run:
            chunks = split_audio(source, self.scratch, max_chunk_size_mb=24)

        cmd = run.call_args[0][0]
        # 50MB / 24MB -> 3 chunks, ceil(1000.5 / 3) = 334
        self.assertEqual(cmd[cmd.index("-segment_time") + 1], "334")
        self.assertEqual(len(chunks), 3)
        self.assertTrue(all(c.path.suffix == ".m4a" for c in chunks))

    def test_stale_chunks_are_cleared(self):
        self.scratch.mkdir(parents=True)
        (self.scratch / "chunk-005.mp3").write_bytes(b"old")
        source = make_file(self.test_dir / "lecture.mp3", 30)

        with patch("chunk_audio.probe_duration", return_value=600.0), patch(
            "chunk_audio.subprocess.run", side_effect=fake_ffmpeg(2)
        ):
            chunks = split_audio(source, self.scratch, max_chunk_size_mb=24)

        self.assertEqual(len(chunks), 2)
        self.assertFalse((self.scratch / "chunk-005.mp3").exists())

    def test_ffmpeg_failure_raises_with_diagnostics(self):
        source = make_file(self.test_dir / "lecture.mp3", 30)

        with patch("chunk_audio.probe_duration", return_value=600.0), patch(
            "chunk_audio.subprocess.run",
            side_effect=fake_ffmpeg(0, returncode=1, stderr="Invalid data found"),
        ):
            with self.assertRaises(MediaProcessingError) as ctx:
                split_audio(source, self.scratch, max_chunk_size_mb=24)

        self.assertIn("Invalid data found", ctx.exception.diagnostics)
        self.assertIn("Invalid data found", str(ctx.exception))
        self.assertEqual(ctx.exception.stage, "chunking")

    def test_scratch_dir_holding_the_source_is_refused(self):
        source = make_file(self.test_dir / "memo.mp3", 1)
        (self.test_dir / "notes.txt").write_text("unrelated")

        with self.assertRaises(MediaProcessingError) as ctx:
            split_audio(source, self.test_dir, max_chunk_size_mb=24)

        self.assertEqual(ctx.exception.stage, "chunking")
        self.assertTrue(source.exists())
        self.assertTrue((self.test_dir / "notes.txt").exists())
        self.assertFalse((self.test_dir / "chunk-000.mp3").exists())

    def test_unrelated_files_in_scratch_dir_survive(self):
        self.scratch.mkdir(parents=True)
        (self.scratch / "notes.txt").write_text("unrelated")
        source = make_file(self.test_dir / "memo.mp3", 1)

        chunks = split_audio(source, self.scratch, max_chunk_size_mb=24)

        self.assertEqual(len(chunks), 1)
        self.assertEqual((self.scratch / "notes.txt").read_text(), "unrelated")

    def test_missing_file_raises(self):
        with self.assertRaises(MediaProcessingError):
            split_audio(self.test_dir / "missing.mp3", self.scratch)

    def test_non_positive_limit_rejected(self):
        source = make_file(self.test_dir / "memo.mp3", 1)
        with self.assertRaises(ValueError):
            split_audio(source, self.scratch, max_chunk_size_mb=0)


class TestProbeDuration(unittest.TestCase):
    """Test cases for probe_duration and clear_scratch_dir."""

    def test_reads_format_duration(self):
        with patch(
            "chunk_audio.mediainfo_json", return_value={"format": {"duration": "612.48"}}
        ):
            self.assertAlmostEqual(probe_duration(Path("a.mp3")), 612.48)

    def test_empty_probe_output_raises(self):
        with patch("chunk_audio.mediainfo_json", return_value={}):
            with self.assertRaises(MediaProcessingError):
                probe_duration(Path("a.mp3"))

    def test_missing_ffprobe_raises(self):
        with patch("chunk_audio.mediainfo_json", side_effect=FileNotFoundError("ffprobe")):
            with self.assertRaises(MediaProcessingError) as ctx:
                probe_duration(Path("a.mp3"))
        self.assertIn("ffprobe", ctx.exception.diagnostics)

    def test_clear_scratch_dir_creates_and_removes_chunks(self):
        test_dir = Path(tempfile.mkdtemp())
        try:
            scratch = test_dir / "nested" / "chunks"
            clear_scratch_dir(scratch)
            self.assertTrue(scratch.is_dir())

            (scratch / "chunk-000.mp3").write_bytes(b"x")
            (scratch / "chunk-001.m4a").write_bytes(b"x")
            (scratch / "notes.txt").write_text("keep me")
            (scratch / "leftover").mkdir()
            clear_scratch_dir(scratch)
            self.assertEqual(
                sorted(p.name for p in scratch.iterdir()), ["leftover", "notes.txt"]
            )
        finally:
            shutil.rmtree(test_dir)

    def test_audio_chunk_defaults(self):
        chunk = AudioChunk(sequence_index=2, path=Path("chunk-002.mp3"))
        self.assertIsNone(chunk.duration_seconds)


if __name__ == "__main__":
    unittest.main()

"""FFmpeg/ffprobe subprocess helpers: probing, frame extraction, MP4 encoding."""

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from cliptrail.models import ProbeResult

logger = logging.getLogger(__name__)


class FFmpegNotFoundError(RuntimeError):
    pass


class ProbeError(RuntimeError):
    """ffprobe failed or reported an unusable duration."""
    pass


class FrameExtractionError(RuntimeError):
    """ffmpeg failed to produce a frame."""
    pass


class EncoderError(RuntimeError):
    """The ffmpeg encoder process could not be fed or exited non-zero."""
    pass


@dataclass(frozen=True)
class ToolPaths:
    """Locations of the ffmpeg and ffprobe executables."""

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"

    @classmethod
    def from_env(cls) -> "ToolPaths":
        return cls(
            ffmpeg=os.environ.get("CLIPTRAIL_FFMPEG", "ffmpeg"),
            ffprobe=os.environ.get("CLIPTRAIL_FFPROBE", "ffprobe"),
        )


def _stderr_text(stderr: bytes | str | None) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        return stderr.decode(errors="replace").strip()
    return stderr.strip()


class FrameService:
    """Runs ffmpeg/ffprobe as blocking subprocesses using the given ToolPaths.

    Safe to share between worker threads; it holds no mutable state.
    """

    def __init__(self, tools: ToolPaths | None = None) -> None:
        self.tools = tools or ToolPaths()

    def check_tools(self) -> None:
        """Raise FFmpegNotFoundError if ffmpeg/ffprobe cannot be resolved."""
        for cmd in (self.tools.ffmpeg, self.tools.ffprobe):
            if shutil.which(cmd) is None:
                raise FFmpegNotFoundError(f"{cmd} not found on PATH")

    def probe(self, input_path: Path) -> ProbeResult:
        """Return the playback duration of *input_path* via ffprobe."""
        cmd = [
            self.tools.ffprobe,
            "-v", "error",
            "-select_streams", "v:0",
            "-probesize", "32k",
            "-show_entries", "format",
            "-of", "json",
            str(input_path),
        ]
        logger.debug("probe: %s", cmd)
        result = subprocess.run(cmd, capture_output=True, text=True)

        if result.returncode != 0:
            raise ProbeError(
                f"ffprobe for duration failed: {_stderr_text(result.stderr)}"
            )

        try:
            data = json.loads(result.stdout)
            # ffprobe reports the duration as a string
            duration = float(data["format"]["duration"])
        except (ValueError, KeyError, TypeError) as e:
            raise ProbeError(f"could not parse duration for {input_path}: {e}") from e

        return ProbeResult(duration=duration)

    def extract_frame(self, input_path: Path, at: float) -> bytes:
        """Return one JPEG frame at *at* seconds into *input_path*.

        If ffmpeg succeeds but writes nothing (seeking past the last decodable
        frame), the last frame of the file is returned instead.
        """
        cmd = [
            self.tools.ffmpeg,
            "-v", "error",
            "-ss", str(at),
            "-i", str(input_path),
            "-frames:v", "1",
            "-f", "image2",
            "-vcodec", "mjpeg",
            "-q:v", "2",
            "-",
        ]
        logger.debug("extract_frame: %s", cmd)
        result = subprocess.run(cmd, capture_output=True)

        if result.returncode != 0:
            raise FrameExtractionError(
                f"ffmpeg frame extraction failed: {_stderr_text(result.stderr)}"
            )

        if not result.stdout:
            logger.debug("No frame at %.2fs in %s, using last frame", at, input_path)
            return self.extract_last_frame(input_path)
        return result.stdout

    def extract_last_frame(self, input_path: Path) -> bytes:
        cmd = [
            self.tools.ffmpeg,
            "-v", "error",
            "-sseof", "-3",
            "-i", str(input_path),
            "-update", "1",
            "-f", "image2",
            "-vcodec", "mjpeg",
            "-q:v", "2",
            "-",
        ]
        result = subprocess.run(cmd, capture_output=True)

        if result.returncode != 0:
            raise FrameExtractionError(
                f"ffmpeg last-frame extraction failed: {_stderr_text(result.stderr)}"
            )
        if not result.stdout:
            raise FrameExtractionError(f"ffmpeg did not produce frame data for {input_path}")
        return result.stdout

    def open_encoder(self, output_path: Path, fps: int) -> "Mp4FrameEncoder":
        return Mp4FrameEncoder(self.tools, output_path, fps)


class Mp4FrameEncoder:
    """An ffmpeg process turning a stream of JPEG frames on stdin into an MP4."""

    def __init__(self, tools: ToolPaths, output_path: Path, fps: int) -> None:
        cmd = [
            tools.ffmpeg, "-y",
            "-v", "error",
            "-f", "image2pipe",
            "-vcodec", "mjpeg",
            "-r", str(fps),
            "-i", "-",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            str(output_path),
        ]
        logger.debug("mp4 encoder: %s", cmd)
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(f"spawn ffmpeg mp4 encoder: {e}") from e

    def encode_frame(self, jpeg: bytes) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.closed:
            raise EncoderError("ffmpeg stdin already closed")
        try:
            stdin.write(jpeg)
            stdin.flush()
        except BrokenPipeError as e:
            raise EncoderError("write frame to ffmpeg stdin: encoder exited") from e

    def finish(self) -> None:
        """Close stdin and block until ffmpeg exits; raise on failure."""
        if self._proc.stdin and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except BrokenPipeError:
                pass
        stderr = self._proc.stderr.read() if self._proc.stderr else b""
        returncode = self._proc.wait()
        if returncode != 0:
            raise EncoderError(f"ffmpeg mp4 encoder failed: {_stderr_text(stderr)}")

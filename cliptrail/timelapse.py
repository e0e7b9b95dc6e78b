"""Timelapse sampler — evenly spaced frames across the whole timeline."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from cliptrail.ffutil import EncoderError, FrameExtractionError, FrameService
from cliptrail.job import JobInfo
from cliptrail.models import ProgressUpdate
from cliptrail.timeline import Timeline
from cliptrail.workers import WorkerPool

logger = logging.getLogger(__name__)


class TimelapseEncoder(ABC):
    """Sink for JPEG frames in presentation order."""

    @abstractmethod
    def encode_frame(self, jpeg: bytes) -> None:
        ...

    def finish(self) -> None:
        pass


class JpgTimelapseEncoder(TimelapseEncoder):
    """Writes each frame as a numbered ``.jpg`` in *output_dir*.

    *start_index* lets a resumed run continue the numbering instead of
    overwriting earlier frames.
    """

    def __init__(self, output_dir: Path, start_index: int = 0) -> None:
        self.output_dir = Path(output_dir)
        self.frame_n = start_index

    def encode_frame(self, jpeg: bytes) -> None:
        self.frame_n += 1
        (self.output_dir / f"{self.frame_n:06d}.jpg").write_bytes(jpeg)


class Mp4TimelapseEncoder(TimelapseEncoder):
    """Streams frames into an ffmpeg H.264 encoder."""

    def __init__(self, frames: FrameService, output_path: Path, fps: int) -> None:
        self.output_path = Path(output_path)
        self._enc = frames.open_encoder(self.output_path, fps)

    def encode_frame(self, jpeg: bytes) -> None:
        self._enc.encode_frame(jpeg)

    def finish(self) -> None:
        self._enc.finish()


def frame_count(duration: float, fps: float) -> int:
    return int(duration * fps)


def sample_timestamps(
    timeline_length: float, duration: float, fps: float, skip: int = 0
) -> list[float]:
    """Global timestamps for frames ``skip .. frame_count - 1``.

    The spacing is always ``timeline_length / frame_count``; *skip* only moves
    the starting index into that grid, so a resumed run lands on exactly the
    frames the original run would have produced.
    """
    count = frame_count(duration, fps)
    if count <= 0:
        return []
    step = timeline_length / count
    return [i * step for i in range(max(skip, 0), count)]


def extract_at(
    job: JobInfo, timeline: Timeline, frames: FrameService, timestamp: float
) -> bytes:
    """Resolve a global timestamp to its clip and extract that frame."""
    job.check_cancelled()
    clip_start, clip = timeline.get_at(timestamp)
    offset = timestamp - clip_start
    try:
        return frames.extract_frame(clip.path, offset)
    except FrameExtractionError as e:
        raise FrameExtractionError(
            f"extract frame from {clip.path} @ {offset:.2f}s: {e}"
        ) from e


def timelapse(
    job: JobInfo,
    timeline: Timeline,
    pool: WorkerPool,
    frames: FrameService,
    encoder: TimelapseEncoder,
    duration: float,
    fps: float,
    skip: int = 0,
) -> int:
    """Sample the timeline into *encoder*; return the number of frames encoded.

    Frames that cannot be extracted are skipped with a warning. Encoder
    failures and cancellation abort the run.
    """
    timestamps = sample_timestamps(timeline.length(), duration, fps, skip)
    total = len(timestamps)

    job.set_progress(ProgressUpdate(progress=0, total=total))

    results = pool.run_ordered_channel(
        (lambda ts=ts: extract_at(job, timeline, frames, ts)) for ts in timestamps
    )

    encoded = 0
    try:
        for i, future in enumerate(results):
            try:
                jpeg = future.result()
            except (FrameExtractionError, OSError) as e:
                detail = f"WARN: could not extract frame {i}/{total}\n{e}\n\n"
            else:
                encoder.encode_frame(jpeg)
                encoded += 1
                detail = f"encoded frame {i}/{total}"

            job.set_progress(ProgressUpdate(progress_inc=1, detail=detail))
    except Exception:
        # The run is already failing; keep its error, not the encoder's
        try:
            encoder.finish()
        except (EncoderError, OSError) as e:
            logger.warning("Timelapse encoder did not finish cleanly: %s", e)
        raise

    encoder.finish()
    logger.info("Encoded %d of %d timelapse frames", encoded, total)
    return encoded

"""Timeline — clips ordered by creation time, addressable by a global offset."""

import bisect
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo

from cliptrail.ffutil import FrameService
from cliptrail.job import JobInfo
from cliptrail.models import Clip, ProgressUpdate
from cliptrail.workers import WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
CLIP_SUFFIX = ".mp4"

# The first 16 characters of a clip name hold its local start time, e.g.
# "2024_0615_143012_0042F.MP4".
TIMESTAMP_PREFIX_LEN = 16
TIMESTAMP_FORMAT = "%Y_%m%d_%H%M%S"


class TimestampParseError(ValueError):
    pass


def parse_timestamp_from_path(path: Path, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Parse the local creation time encoded in a clip's filename, as UTC.

    Raises TimestampParseError for short or malformed names, and for local
    times that are ambiguous or skipped around a DST transition.
    """
    name = Path(path).name
    if len(name) < TIMESTAMP_PREFIX_LEN:
        raise TimestampParseError(f"filename too short for a timestamp: {name!r}")

    prefix = name[:TIMESTAMP_PREFIX_LEN]
    try:
        naive = datetime.strptime(prefix, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise TimestampParseError(f"bad timestamp prefix {prefix!r}: {e}") from e

    tz = ZoneInfo(tz_name)
    early = naive.replace(tzinfo=tz, fold=0)
    late = naive.replace(tzinfo=tz, fold=1)
    # Repeated and skipped wall times both resolve differently per fold
    if early.utcoffset() != late.utcoffset():
        raise TimestampParseError(
            f"local time {prefix!r} is ambiguous or does not exist in {tz_name}"
        )
    return early.astimezone(timezone.utc)


def find_clip_paths(input_root: Path) -> list[Path]:
    """All ``*.mp4`` files below *input_root*, matched case-insensitively."""
    return sorted(
        p for p in Path(input_root).rglob("*")
        if p.is_file() and p.suffix.lower() == CLIP_SUFFIX
    )


def process_clip(
    job: JobInfo, frames: FrameService, path: Path, tz_name: str = DEFAULT_TIMEZONE
) -> Clip:
    """Probe one file and parse its creation time into a Clip."""
    job.check_cancelled()

    probe = frames.probe(path)
    creation_time = parse_timestamp_from_path(path, tz_name)

    job.detail(f"processed clip {path}")
    return Clip(creation_time=creation_time, length=probe.duration, path=path)


class Timeline:
    """Immutable sequence of ``(start_offset, Clip)`` pairs.

    ``start_offset[0] == 0`` and each following offset is the previous one
    plus that clip's length. Offsets and lengths are in seconds.
    """

    def __init__(self, clips: Iterable[Clip]) -> None:
        ordered = sorted(clips, key=lambda c: c.creation_time)

        offsets: list[float] = []
        total = 0.0
        for clip in ordered:
            offsets.append(total)
            total += clip.length

        self._offsets = tuple(offsets)
        self._clips = tuple(ordered)
        self._duration = total

    @classmethod
    def from_path(
        cls,
        job: JobInfo,
        pool: WorkerPool,
        frames: FrameService,
        input_root: Path,
        tz_name: str = DEFAULT_TIMEZONE,
    ) -> "Timeline":
        """Probe every clip under *input_root* in parallel and build a Timeline.

        Any clip that fails to probe or parse fails the whole build.
        """
        paths = find_clip_paths(input_root)
        job.set_progress(ProgressUpdate(
            progress=0,
            total=0,
            detail="--- Starting to timeline clips... ---",
        ))

        results = pool.run_channel(
            (lambda i=i, p=p: (i, process_clip(job, frames, p, tz_name)))
            for i, p in enumerate(paths)
        )

        indexed: list[tuple[int, Clip]] = []
        for future in results:
            indexed.append(future.result())

        # Equal creation times fall back to enumeration order
        indexed.sort(key=lambda pair: pair[0])
        timeline = cls(clip for _, clip in indexed)

        job.detail(
            f"Total combined length of all clips is {timeline.length() / 3600:.2f}h"
        )
        job.detail("--- Finished clips timeline ---")
        return timeline

    def get_at(self, timestamp: float) -> tuple[float, Clip]:
        """Return ``(start_offset, clip)`` for the clip playing at *timestamp*.

        A timestamp at or past the end resolves to the last clip.
        """
        if not self._clips:
            raise ValueError("timeline has no clips")
        if timestamp < 0:
            raise ValueError(f"negative timeline timestamp: {timestamp}")

        idx = bisect.bisect_right(self._offsets, timestamp) - 1
        return self._offsets[idx], self._clips[idx]

    def length(self) -> float:
        """Total duration of all clips, in seconds."""
        return self._duration

    @property
    def offsets(self) -> tuple[float, ...]:
        return self._offsets

    def entries(self) -> Iterator[tuple[float, Clip]]:
        return zip(self._offsets, self._clips)

    def __iter__(self) -> Iterator[Clip]:
        return iter(self._clips)

    def __len__(self) -> int:
        return len(self._clips)

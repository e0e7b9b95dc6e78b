"""Orchestrator — builds the timeline once and runs the jobs a Manifest asks for."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from cliptrail.export import export_timeline
from cliptrail.ffutil import FrameService
from cliptrail.glyph import GlyphConfig, scrape_locations
from cliptrail.glyph_debug import annotate_frames, organize_glyphs
from cliptrail.job import JobInfo
from cliptrail.manifest import Manifest
from cliptrail.models import Coordinate
from cliptrail.timelapse import (
    JpgTimelapseEncoder,
    Mp4TimelapseEncoder,
    TimelapseEncoder,
    timelapse,
)
from cliptrail.timeline import DEFAULT_TIMEZONE, Timeline
from cliptrail.workers import WorkerPool

logger = logging.getLogger(__name__)

MP4_FILENAME = "output.mp4"


@dataclass
class EngineResult:
    output_dir: Path
    clip_count: int = 0
    timeline_length: float = 0.0
    frames_encoded: int = 0
    export_path: Path | None = None
    locations: list[Coordinate] = field(default_factory=list)


class ProcessClipsJob:
    """A worker pool plus the timeline of one input folder.

    The timeline is built once, in the constructor, and only read afterwards.
    """

    def __init__(
        self,
        job: JobInfo,
        input_path: Path,
        threads: int,
        frames: FrameService | None = None,
        tz_name: str = DEFAULT_TIMEZONE,
        pool: WorkerPool | None = None,
    ) -> None:
        self.job = job
        self.frames = frames or FrameService()
        self.pool = pool or WorkerPool(threads)
        self.timeline = Timeline.from_path(
            job, self.pool, self.frames, Path(input_path), tz_name
        )

    def create_timelapse(
        self,
        typ: str,
        length: float,
        fps: int,
        output_dir: Path,
        skip: int = 0,
    ) -> int:
        self.job.detail("--- Begin timelapsing ---")
        encoder: TimelapseEncoder
        if typ == "jpg":
            encoder = JpgTimelapseEncoder(output_dir, start_index=skip)
        elif typ == "mp4":
            encoder = Mp4TimelapseEncoder(self.frames, Path(output_dir) / MP4_FILENAME, fps)
        else:
            raise ValueError(f"unknown timelapse type {typ!r}")

        encoded = timelapse(
            self.job, self.timeline, self.pool, self.frames, encoder, length, fps, skip
        )
        self.job.detail("--- Finished timelapsing ---")
        return encoded

    def scrape_locations(self, glyph_config: GlyphConfig) -> list[Coordinate]:
        return scrape_locations(self.job, self.timeline, self.pool, self.frames, glyph_config)

    def export_data(
        self, output_dir: Path, locations: list[Coordinate] | None = None
    ) -> Path:
        return export_timeline(self.job, self.timeline, locations, output_dir)


def process(
    manifest: Manifest, job: JobInfo | None = None, pool: WorkerPool | None = None
) -> EngineResult:
    """Execute every step the manifest enables.

    Args:
        manifest: Validated job manifest.
        job: Job context carrying the cancel flag and progress sink.
        pool: Worker pool to run on. A fresh one with ``manifest.threads``
            workers is started when omitted.
    """
    job = job or JobInfo()
    manifest.validate()

    frames = FrameService(manifest.tools)
    frames.check_tools()

    # Loaded up front so a bad layout fails before any clip is probed
    glyph_config = None
    if manifest.glyph.config is not None:
        glyph_config = GlyphConfig.load(manifest.glyph.config)

    clips_job = ProcessClipsJob(
        job, manifest.input, manifest.threads, frames, tz_name=manifest.timezone, pool=pool
    )
    timeline = clips_job.timeline
    if len(timeline) == 0:
        raise ValueError(f"no clips found under {manifest.input}")

    output_dir = Path(manifest.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    result = EngineResult(
        output_dir=output_dir,
        clip_count=len(timeline),
        timeline_length=timeline.length(),
    )

    if glyph_config is not None and manifest.glyph.annotate:
        annotate_frames(job, timeline, glyph_config, frames, output_dir)
    if glyph_config is not None and manifest.glyph.organize:
        organize_glyphs(job, timeline, glyph_config, frames, output_dir)

    tl = manifest.timelapse
    if tl.type != "none":
        result.frames_encoded = clips_job.create_timelapse(
            tl.type, tl.length, tl.fps, output_dir, skip=tl.skip
        )

    if manifest.export.enabled:
        locations = None
        if manifest.export.location and glyph_config is not None:
            locations = clips_job.scrape_locations(glyph_config)
            result.locations = locations
        result.export_path = clips_job.export_data(output_dir, locations)

    logger.info("Job %s finished: %d clips", job.id, result.clip_count)
    return result


def run_job(
    manifest: Manifest, job: JobInfo, pool: WorkerPool | None = None
) -> EngineResult:
    """Run :func:`process`, reporting a terminal failure through the job.

    The job is marked cancelled afterwards either way, so tasks still queued
    for it stop at their next checkpoint.
    """
    try:
        return process(manifest, job, pool)
    except Exception as e:
        job.detail(f"----- FAILED -----\n{e!r}\n")
        raise
    finally:
        job.cancel()

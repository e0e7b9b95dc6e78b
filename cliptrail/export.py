"""Timeline export — one JSON record per clip."""

import json
from datetime import timezone
from pathlib import Path

from cliptrail.job import JobInfo
from cliptrail.models import Coordinate, ExportEntry
from cliptrail.timeline import Timeline

EXPORT_FILENAME = "output.json"


def build_entries(
    timeline: Timeline, locations: list[Coordinate] | None = None
) -> list[ExportEntry]:
    if locations is not None and len(locations) != len(timeline):
        raise ValueError(
            f"{len(locations)} locations for a timeline of {len(timeline)} clips"
        )

    return [
        ExportEntry(
            file_path=str(clip.path),
            timestamp=clip.creation_time.astimezone(timezone.utc).isoformat(),
            duration_seconds=clip.length,
            location=locations[i] if locations is not None else None,
        )
        for i, clip in enumerate(timeline)
    ]


def export_timeline(
    job: JobInfo,
    timeline: Timeline,
    locations: list[Coordinate] | None,
    output_dir: Path,
) -> Path:
    """Write ``output.json`` into *output_dir* and return its path."""
    entries = build_entries(timeline, locations)
    output_path = Path(output_dir) / EXPORT_FILENAME
    output_path.write_text(
        json.dumps([e.to_dict() for e in entries], indent=2), encoding="utf-8"
    )
    job.detail(f"exported data to file {output_path}")
    return output_path

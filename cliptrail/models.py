"""Shared data types used across ClipTrail."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class Clip:
    """One input video: its path, creation time (UTC) and length in seconds."""

    creation_time: datetime
    length: float
    path: Path


@dataclass(frozen=True)
class Coordinate:
    """Signed decimal-degree position. ``(0, 0)`` means "not recovered"."""

    lat: float = 0.0
    lng: float = 0.0


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float


@dataclass
class ProgressUpdate:
    """A structured progress message for a job's progress sink."""

    progress: int | None = None
    progress_inc: int | None = None
    total: int | None = None
    detail: str | None = None

    @classmethod
    def detail_only(cls, text: str) -> "ProgressUpdate":
        return cls(detail=text)

    def to_dict(self) -> dict:
        """Wire form for progress streams; unset fields are omitted."""
        data = {
            "progress": self.progress,
            "progressIncrement": self.progress_inc,
            "total": self.total,
            "detail": self.detail,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class ExportEntry:
    """One clip's row in the exported timeline document."""

    file_path: str
    timestamp: str
    duration_seconds: float
    location: Coordinate | None = None

    def to_dict(self) -> dict:
        return {
            "filePath": self.file_path,
            "timestamp": self.timestamp,
            "durationSeconds": self.duration_seconds,
            "location": (
                {"lat": self.location.lat, "lng": self.location.lng}
                if self.location is not None
                else None
            ),
        }

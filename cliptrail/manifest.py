"""JSON manifest schema — the contract between CLI/API and engine."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from cliptrail.ffutil import ToolPaths
from cliptrail.timeline import DEFAULT_TIMEZONE

TIMELAPSE_TYPES = ("none", "jpg", "mp4")


@dataclass
class TimelapseConfig:
    """Configuration for the sampled timelapse output."""

    type: str = "none"
    length: float = 60.0
    fps: int = 30
    skip: int = 0


@dataclass
class ExportConfig:
    """Configuration for the per-clip JSON export."""

    enabled: bool = False
    location: bool = False


@dataclass
class GlyphOptions:
    """Where the overlay layout lives and which authoring aids to run."""

    config: Path | None = None
    annotate: bool = False
    organize: bool = False


def default_threads() -> int:
    return os.cpu_count() or 1


@dataclass
class Manifest:
    """Top-level job manifest."""

    input: Path
    output: Path
    version: str = "1"
    threads: int = field(default_factory=default_threads)
    timezone: str = DEFAULT_TIMEZONE
    tools: ToolPaths = field(default_factory=ToolPaths.from_env)
    timelapse: TimelapseConfig = field(default_factory=TimelapseConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    glyph: GlyphOptions = field(default_factory=GlyphOptions)

    def validate(self) -> None:
        if self.timelapse.type not in TIMELAPSE_TYPES:
            raise ValueError(
                f"timelapse.type must be one of {', '.join(TIMELAPSE_TYPES)}, "
                f"got {self.timelapse.type!r}"
            )
        if self.timelapse.type != "none":
            if self.timelapse.fps <= 0:
                raise ValueError("timelapse.fps must be positive")
            if self.timelapse.length <= 0:
                raise ValueError("timelapse.length must be positive")
            if self.timelapse.skip < 0:
                raise ValueError("timelapse.skip must not be negative")
        needs_glyphs = (
            (self.export.enabled and self.export.location)
            or self.glyph.annotate
            or self.glyph.organize
        )
        if needs_glyphs and self.glyph.config is None:
            raise ValueError("glyph.config is required for geolocation and glyph tools")


def manifest_from_dict(data: dict) -> Manifest:
    """Build and validate a Manifest from decoded JSON."""
    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    timelapse = TimelapseConfig(**data["timelapse"]) if "timelapse" in data else TimelapseConfig()
    export = ExportConfig(**data["export"]) if "export" in data else ExportConfig()

    glyph_data = dict(data.get("glyph", {}))
    if glyph_data.get("config") is not None:
        glyph_data["config"] = Path(glyph_data["config"])
    glyph = GlyphOptions(**glyph_data)

    env_tools = ToolPaths.from_env()
    tools = ToolPaths(
        ffmpeg=data.get("ffmpeg", env_tools.ffmpeg),
        ffprobe=data.get("ffprobe", env_tools.ffprobe),
    )

    m = Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        threads=int(data.get("threads") or default_threads()),
        timezone=data.get("timezone", DEFAULT_TIMEZONE),
        tools=tools,
        timelapse=timelapse,
        export=export,
        glyph=glyph,
    )
    m.validate()
    return m


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    return manifest_from_dict(json.loads(path.read_text()))

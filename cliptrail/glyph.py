"""Overlay geolocation scraping by nearest-neighbour glyph bitmap matching.

Each clip carries a burned-in text overlay with its latitude and longitude
on two fixed rows of fixed-pitch character cells. A cell is binarised into
a :class:`GlyphMask` and compared against a small labelled alphabet of
reference masks; the best-scoring character wins.
"""

import io
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from cliptrail.ffutil import FrameExtractionError, FrameService
from cliptrail.job import JobInfo
from cliptrail.models import Coordinate, ProgressUpdate
from cliptrail.timeline import Timeline
from cliptrail.workers import WorkerPool

logger = logging.getLogger(__name__)

# Overlay text is bright and close to grey; video background rarely is both.
WHITE_AVG_MIN = 220
WHITE_MAX_CHROMA = 30

# Agreement on a stroke pixel says far more about shape than background.
WHITE_WEIGHT = 15
BLACK_WEIGHT = 1

LAT_PATTERN = re.compile(r"([NS])[:. ]?(\d{2,3})[:. ](\d+)")
LNG_PATTERN = re.compile(r"([EW])[:. ]?(\d{2,3})[:. ](\d+)")


class GlyphConfigError(ValueError):
    """The glyph layout document or a reference bitmap is unusable."""
    pass


class CoordinateParseError(ValueError):
    pass


class GlyphMask:
    """A black/white bitmap; ``True`` marks a white (stroke) pixel."""

    def __init__(self, bits: np.ndarray) -> None:
        self.bits = np.asarray(bits, dtype=bool)

    @classmethod
    def from_rgb(cls, image: Image.Image) -> "GlyphMask":
        """Binarise a colour crop: white where bright and unsaturated."""
        rgb = np.asarray(image.convert("RGB"), dtype=np.uint16)
        avg = rgb.sum(axis=2) // 3
        chroma = rgb.max(axis=2) - rgb.min(axis=2)
        return cls((avg >= WHITE_AVG_MIN) & (chroma <= WHITE_MAX_CHROMA))

    @classmethod
    def from_bitmap(cls, image: Image.Image) -> "GlyphMask":
        """Load a stored reference mask (any mode; >127 luma is white)."""
        return cls(np.asarray(image.convert("L")) > 127)

    @property
    def shape(self) -> tuple[int, int]:
        return self.bits.shape

    def score_similarity(self, other: "GlyphMask") -> float:
        """Weighted pixel agreement in [0, 1]; 1.0 means identical."""
        if self.bits.shape != other.bits.shape:
            raise ValueError(
                f"mask size mismatch: {self.bits.shape} vs {other.bits.shape}"
            )
        if self.bits.size == 0:
            raise ValueError("cannot score empty masks")

        weights = np.where(self.bits | other.bits, WHITE_WEIGHT, BLACK_WEIGHT)
        matched = weights[self.bits == other.bits].sum()
        return float(matched) / float(weights.sum())

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.bits.astype(np.uint8) * 255)


@dataclass(frozen=True)
class GlyphRow:
    """One horizontal run of fixed-pitch character cells on the frame."""

    top: int
    left: int
    width: int
    height: int
    columns: int

    def boxes(self) -> list[tuple[int, int, int, int]]:
        """Pillow crop boxes ``(x0, y0, x1, y1)`` for every column."""
        return [
            (
                self.left + col * self.width,
                self.top,
                self.left + (col + 1) * self.width,
                self.top + self.height,
            )
            for col in range(self.columns)
        ]

    def glyphs(self, image: Image.Image) -> list[GlyphMask]:
        return [GlyphMask.from_rgb(image.crop(box)) for box in self.boxes()]

    def scrape_string(
        self, image: Image.Image, alphabet: list[tuple[str, GlyphMask]]
    ) -> str:
        """Decode the row; each cell takes the first best-scoring character."""
        chars: list[str] = []
        for glyph in self.glyphs(image):
            best_char = ""
            best_score = -1.0
            for char, ref in alphabet:
                score = glyph.score_similarity(ref)
                if score > best_score:
                    best_char, best_score = char, score
            chars.append(best_char)
        return "".join(chars)


@dataclass(frozen=True)
class GlyphChar:
    char: str
    filepath: Path


@dataclass
class GlyphConfig:
    """Latitude/longitude row layout plus the reference alphabet.

    The JSON document looks like::

        {"glyphRows": [{"top": 1000, "left": 80, "width": 18, "height": 28,
                        "columns": 12}, ...],
         "glyphChars": [{"char": "N", "filepath": "glyphs/N.bmp"}, ...]}

    Relative bitmap paths resolve against the document's directory.
    """

    rows: list[GlyphRow]
    chars: list[GlyphChar]

    @classmethod
    def load(cls, path: str | Path) -> "GlyphConfig":
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise GlyphConfigError(f"could not read glyph config {path}: {e}") from e
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Path = Path(".")) -> "GlyphConfig":
        try:
            rows = [
                GlyphRow(
                    top=int(r["top"]),
                    # "right" is the name used by older layout files
                    left=int(r["left"] if "left" in r else r["right"]),
                    width=int(r["width"]),
                    height=int(r["height"]),
                    columns=int(r["columns"]),
                )
                for r in data["glyphRows"]
            ]
            chars = [
                GlyphChar(char=str(c["char"]), filepath=base_dir / c["filepath"])
                for c in data["glyphChars"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise GlyphConfigError(f"malformed glyph config: {e!r}") from e

        if len(rows) < 2:
            raise GlyphConfigError(
                f"glyph config needs a latitude and a longitude row, got {len(rows)}"
            )
        if not chars:
            raise GlyphConfigError("glyph config has an empty alphabet")
        for row in rows:
            if row.width <= 0 or row.height <= 0 or row.columns <= 0:
                raise GlyphConfigError(f"degenerate glyph row {row}")
        return cls(rows=rows, chars=chars)

    def load_glyph_masks(self) -> list[tuple[str, GlyphMask]]:
        """Load the reference alphabet, in document order."""
        masks: list[tuple[str, GlyphMask]] = []
        for gc in self.chars:
            try:
                with Image.open(gc.filepath) as img:
                    mask = GlyphMask.from_bitmap(img)
            except OSError as e:
                raise GlyphConfigError(
                    f"could not load glyph bitmap {gc.filepath}: {e}"
                ) from e

            for row in self.rows:
                if mask.shape != (row.height, row.width):
                    raise GlyphConfigError(
                        f"glyph {gc.char!r} is {mask.shape[1]}x{mask.shape[0]}, "
                        f"row cells are {row.width}x{row.height}"
                    )
            masks.append((gc.char, mask))
        return masks


def parse_lat_lng(text: str, pattern: re.Pattern) -> float:
    """Parse ``<cardinal><degrees><sep><fraction>`` into signed degrees."""
    m = pattern.search(text)
    if m is None:
        raise CoordinateParseError(
            f"{text!r} unmatched by regular expression {pattern.pattern}"
        )
    cardinal, major, decimal = m.groups()
    try:
        value = float(f"{major}.{decimal}")
    except ValueError as e:
        raise CoordinateParseError(f"could not parse {major}.{decimal}: {e}") from e
    return -value if cardinal in ("S", "W") else value


def coordinate_from_strings(lat: str, lng: str) -> Coordinate:
    return Coordinate(
        lat=parse_lat_lng(lat, LAT_PATTERN),
        lng=parse_lat_lng(lng, LNG_PATTERN),
    )


def load_frame_image(frames: FrameService, clip_path: Path, at: float = 0.0) -> Image.Image:
    """Extract a frame and decode it as an RGB image."""
    data = frames.extract_frame(clip_path, at)
    with Image.open(io.BytesIO(data)) as img:
        return img.convert("RGB")


def scrape_clip_location(
    job: JobInfo,
    config: GlyphConfig,
    alphabet: list[tuple[str, GlyphMask]],
    frames: FrameService,
    clip_path: Path,
) -> Coordinate:
    """Read one clip's overlay; an unreadable overlay yields ``Coordinate()``."""
    job.check_cancelled()

    try:
        image = load_frame_image(frames, clip_path)
        lat_row, lng_row = config.rows[0], config.rows[1]
        lat = lat_row.scrape_string(image, alphabet)
        lng = lng_row.scrape_string(image, alphabet)
        location = coordinate_from_strings(lat, lng)
    except (FrameExtractionError, OSError, ValueError) as e:
        job.set_progress(ProgressUpdate(
            progress_inc=1,
            detail=f"WARN: could not scrape clip geolocation {clip_path}\n{e}\n\n",
        ))
        return Coordinate()

    job.set_progress(ProgressUpdate(
        progress_inc=1,
        detail=f"scraped clip geolocation {clip_path}",
    ))
    return location


def scrape_locations(
    job: JobInfo,
    timeline: Timeline,
    pool: WorkerPool,
    frames: FrameService,
    config: GlyphConfig,
) -> list[Coordinate]:
    """Scrape every clip in parallel; result index i belongs to timeline clip i."""
    alphabet = config.load_glyph_masks()

    job.set_progress(ProgressUpdate(progress=0, total=len(timeline)))

    results = pool.run_ordered_channel(
        (lambda p=clip.path: scrape_clip_location(job, config, alphabet, frames, p))
        for clip in timeline
    )
    locations = [future.result() for future in results]

    job.detail("finished scraping geolocations")
    return locations

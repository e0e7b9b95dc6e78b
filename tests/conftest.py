"""Shared test fixtures."""

import io
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from cliptrail.models import Clip

GLYPH_W = 6
GLYPH_H = 8
ALPHABET = "NSEW0123456789."

LAT_ROW = {"top": 2, "left": 3, "width": GLYPH_W, "height": GLYPH_H, "columns": 8}
LNG_ROW = {"top": 14, "left": 3, "width": GLYPH_W, "height": GLYPH_H, "columns": 9}

FRAME_SIZE = (64, 26)
BACKGROUND = (30, 60, 160)
STROKE = (250, 250, 245)


def glyph_bits(char: str) -> np.ndarray:
    """A fixed pseudo-random stroke pattern for *char*."""
    rng = np.random.default_rng(ord(char))
    return rng.random((GLYPH_H, GLYPH_W)) > 0.5


def render_frame(lat_text: str, lng_text: str) -> bytes:
    """PNG bytes of a frame with both overlay rows drawn in the glyph font."""
    pixels = np.zeros((FRAME_SIZE[1], FRAME_SIZE[0], 3), dtype=np.uint8)
    pixels[:, :] = BACKGROUND
    for row, text in ((LAT_ROW, lat_text), (LNG_ROW, lng_text)):
        for col, char in enumerate(text[: row["columns"]]):
            x = row["left"] + col * row["width"]
            y = row["top"]
            cell = pixels[y:y + GLYPH_H, x:x + GLYPH_W]
            cell[glyph_bits(char)] = STROKE
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def glyph_config_path(tmp_path) -> Path:
    """A glyph layout document with one reference bitmap per ALPHABET char."""
    glyph_dir = tmp_path / "glyphs"
    glyph_dir.mkdir()
    chars = []
    for i, char in enumerate(ALPHABET):
        name = f"{i:02d}.bmp"
        Image.fromarray(glyph_bits(char).astype(np.uint8) * 255).save(glyph_dir / name)
        chars.append({"char": char, "filepath": f"glyphs/{name}"})

    path = tmp_path / "glyphconfig.json"
    path.write_text(json.dumps({"glyphRows": [LAT_ROW, LNG_ROW], "glyphChars": chars}))
    return path


def make_clips(lengths: list[float], start: datetime | None = None) -> list[Clip]:
    """Clips one hour apart, in order, with the given lengths."""
    start = start or datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
    return [
        Clip(
            creation_time=start + timedelta(hours=i),
            length=length,
            path=Path(f"clip{i}.mp4"),
        )
        for i, length in enumerate(lengths)
    ]

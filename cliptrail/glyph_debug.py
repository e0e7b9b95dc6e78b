"""Tools for authoring a glyph layout and its reference alphabet.

``annotate_frames`` outlines every configured cell on each clip's first
frame so row positions can be checked by eye. ``organize_glyphs`` crops
every cell of every clip and files the masks into folders of look-alikes;
one representative per folder becomes a reference bitmap.
"""

import logging
from pathlib import Path

from PIL import Image, ImageDraw

from cliptrail.ffutil import FrameService
from cliptrail.glyph import GlyphConfig, GlyphMask, load_frame_image
from cliptrail.job import JobInfo
from cliptrail.timeline import Timeline

logger = logging.getLogger(__name__)

OUTLINE_COLOR = (255, 0, 0)
GLYPH_MASK_SIMILARITY_THRESHOLD = 0.85


def annotate_image(image: Image.Image, config: GlyphConfig) -> Image.Image:
    """Return a copy of *image* with a red outline around every glyph cell."""
    annotated = image.convert("RGB")
    draw = ImageDraw.Draw(annotated)
    for row in config.rows:
        for x0, y0, x1, y1 in row.boxes():
            draw.rectangle((x0, y0, x1 - 1, y1 - 1), outline=OUTLINE_COLOR)
    return annotated


def annotate_frames(
    job: JobInfo,
    timeline: Timeline,
    config: GlyphConfig,
    frames: FrameService,
    output_dir: Path,
) -> list[Path]:
    out = Path(output_dir) / "glyph"
    out.mkdir(parents=True, exist_ok=True)

    job.detail("[dbg] annotating frames")
    written: list[Path] = []
    for i, clip in enumerate(timeline):
        job.check_cancelled()

        image = annotate_image(load_frame_image(frames, clip.path), config)
        output_path = out / f"{i:04d}.jpg"
        image.save(output_path)
        written.append(output_path)

        job.detail(f"[dbg] annotated glyph frame exported to {output_path}")
    return written


def cluster_mask(unique: list[GlyphMask], mask: GlyphMask) -> int:
    """Index of the closest cluster, appending *mask* as a new one if none is close."""
    best_idx = 0
    best_score = 0.0
    for i, candidate in enumerate(unique):
        score = mask.score_similarity(candidate)
        if score > best_score:
            best_idx, best_score = i, score

    if best_score >= GLYPH_MASK_SIMILARITY_THRESHOLD:
        return best_idx
    unique.append(mask)
    return len(unique) - 1


def organize_glyphs(
    job: JobInfo,
    timeline: Timeline,
    config: GlyphConfig,
    frames: FrameService,
    output_dir: Path,
) -> int:
    """Export every cell mask as ``glyph/<cluster>/g_<n>.bmp``; return the cluster count."""
    job.detail("[dbg] begin recognizing glyphs")

    n_glyphs = 0
    unique: list[GlyphMask] = []
    for clip in timeline:
        job.check_cancelled()

        image = load_frame_image(frames, clip.path)
        for row in config.rows:
            for mask in row.glyphs(image):
                idx = cluster_mask(unique, mask)
                path = Path(output_dir) / "glyph" / f"{idx:02d}" / f"g_{n_glyphs:04d}.bmp"
                path.parent.mkdir(parents=True, exist_ok=True)
                mask.to_image().save(path)
                n_glyphs += 1

        job.detail(f"[dbg] glyphs exported for {clip.path}")

    job.detail("[dbg] finished recognizing glyphs")
    logger.info("Sorted %d glyphs into %d clusters", n_glyphs, len(unique))
    return len(unique)

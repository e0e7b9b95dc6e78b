#!/usr/bin/env python3
"""Generate a folder of short synthetic dashcam clips for ClipTrail testing.

Clips are named the way dashcams name them (``YYYY_MMDD_HHMMSS_NNNN.MP4``,
local time) and have different lengths so timeline offsets are uneven:
  0000  3s  blue
  0001  5s  red
  0002  2s  green
  0003  4s  yellow
"""

import subprocess
import sys
from pathlib import Path

CLIPS = [
    ("2024_0615_100000_0000.MP4", 3, "blue"),
    ("2024_0615_100500_0001.MP4", 5, "red"),
    ("2024_0615_101000_0002.MP4", 2, "green"),
    ("2024_0615_101500_0003.MP4", 4, "yellow"),
]


def generate_test_clips(output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)

    for name, seconds, color in CLIPS:
        cmd = [
            "ffmpeg", "-y",
            "-f", "lavfi",
            "-i", f"color=c={color}:s=320x240:d={seconds}:r=30",
            "-vf", "drawbox=x=10:y=200:w=120:h=12:color=white:t=fill",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            str(output_dir / name),
        ]
        subprocess.run(cmd, check=True, capture_output=True)
        print(f"Generated: {output_dir / name}")


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/clips")
    generate_test_clips(out)

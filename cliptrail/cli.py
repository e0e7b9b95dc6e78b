"""Thin CLI entry point — builds a Manifest and calls the engine."""

import argparse
import logging
import os
import sys
from pathlib import Path

from tqdm import tqdm

from cliptrail.engine import run_job
from cliptrail.job import JobCancelledError, JobInfo
from cliptrail.manifest import (
    TIMELAPSE_TYPES,
    ExportConfig,
    GlyphOptions,
    Manifest,
    TimelapseConfig,
    default_threads,
    load_manifest,
)
from cliptrail.models import ProgressUpdate


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


class TqdmProgress:
    """Progress sink rendering totals as a tqdm bar and details as lines."""

    def __init__(self, show_details: bool = False) -> None:
        self.show_details = show_details
        self.bar: tqdm | None = None

    def __call__(self, update: ProgressUpdate) -> None:
        if update.total is not None:
            if self.bar is not None:
                self.bar.close()
            self.bar = tqdm(total=update.total or None, unit="item")
        if update.progress is not None and self.bar is not None:
            self.bar.n = update.progress
            self.bar.refresh()
        if update.progress_inc and self.bar is not None:
            self.bar.update(update.progress_inc)
        if update.detail and (self.show_details or update.detail.startswith(("WARN", "---"))):
            tqdm.write(update.detail.rstrip())

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()


def manifest_from_args(args: argparse.Namespace) -> Manifest:
    if args.manifest:
        return load_manifest(args.manifest)

    output = args.output or args.input.with_name(args.input.name + "_cliptrail")
    m = Manifest(
        input=args.input,
        output=output,
        threads=args.threads,
        timelapse=TimelapseConfig(
            type=args.timelapse,
            length=args.length,
            fps=args.fps,
            skip=args.skip,
        ),
        export=ExportConfig(enabled=args.export or args.locations, location=args.locations),
        glyph=GlyphOptions(
            config=args.glyph_config,
            annotate=args.annotate_glyphs,
            organize=args.organize_glyphs,
        ),
    )
    if args.timezone:
        m.timezone = args.timezone
    m.validate()
    return m


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cliptrail",
        description="ClipTrail — timeline dashcam clips into timelapses and geolocated exports.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    proc = sub.add_parser("process", help="Process a folder of clips")
    proc.add_argument("input", nargs="?", type=Path, help="Folder of timestamped .mp4 clips")
    proc.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    proc.add_argument("--output", "-o", type=Path, help="Output directory")
    proc.add_argument("--threads", "-j", type=int, default=default_threads(), help="Worker threads")
    proc.add_argument("--timelapse", choices=TIMELAPSE_TYPES, default="none", help="Timelapse output type")
    proc.add_argument("--length", type=float, default=60.0, help="Timelapse length in seconds")
    proc.add_argument("--fps", type=int, default=30, help="Timelapse frame rate")
    proc.add_argument("--skip", type=int, default=0, help="Frames to skip when resuming a timelapse")
    proc.add_argument("--export", action="store_true", help="Write output.json")
    proc.add_argument("--locations", action="store_true", help="Scrape overlay geolocation into the export")
    proc.add_argument("--glyph-config", type=Path, help="Glyph layout JSON")
    proc.add_argument("--annotate-glyphs", action="store_true", help="Export frames with glyph cells outlined")
    proc.add_argument("--organize-glyphs", action="store_true", help="Export clustered glyph masks")
    proc.add_argument("--timezone", type=str, help="Zone the clip filenames are recorded in")
    proc.add_argument("--details", action="store_true", help="Print every progress detail line")

    serve = sub.add_parser("serve", help="Launch the web job server")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    sub.add_parser("parallelism", help="Print the number of available CPUs")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "parallelism":
        print(os.cpu_count() or 1)
        return

    if args.command == "serve":
        from cliptrail.web import create_app
        app = create_app()
        print(f"ClipTrail job server: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    if not args.manifest and not args.input:
        print("Error: provide either an INPUT folder or --manifest.", file=sys.stderr)
        sys.exit(1)

    try:
        m = manifest_from_args(args)
    except (TypeError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    progress = TqdmProgress(show_details=args.details)
    job = JobInfo(job_id=1, on_progress=progress)
    try:
        result = run_job(m, job)
    except KeyboardInterrupt:
        job.cancel()
        print("\nCancelled.", file=sys.stderr)
        sys.exit(130)
    except JobCancelledError:
        print("\nCancelled.", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"\nFailed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        progress.close()

    print()
    print(f"Done! Output: {result.output_dir}")
    print(f"  Clips: {result.clip_count} ({result.timeline_length / 3600:.2f}h)")
    if result.frames_encoded:
        print(f"  Timelapse frames: {result.frames_encoded}")
    if result.export_path:
        print(f"  Export: {result.export_path}")


if __name__ == "__main__":
    main()

"""
Command line entry point for the watermark worker
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from core.config import get_config, load_config, set_config
from core.errors import WatermarkError
from core.models import Dimensions, WatermarkSpec
from core.utils.logging import setup_logging
from core.workflow.executor import JobExecutor
from core.workflow.worker import Worker, load_job_file, read_job_records
from processors.image.compositor import ImageCompositor
from processors.image.overlay import OverlayRenderer
from processors.video.watermark import StreamingTranscodePipeline
from storage.backends.local import LocalBlobStore

console = Console()


def _print_results(results):
    table = Table(title="Jobs")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Error")
    for r in results:
        status = "[green]done[/green]" if r.success else "[red]failed[/red]"
        table.add_row(str(r.job_id), status, f"{r.duration:.1f}s", r.error or "")
    console.print(table)


def _cmd_worker(a) -> int:
    executor = JobExecutor.from_config()
    if a.jobs == "-":
        records = list(read_job_records(sys.stdin))
    else:
        records = load_job_file(Path(a.jobs))
    results = Worker(executor).run(records)
    _print_results(results)
    return 0 if all(r.success for r in results) else 1


def _cmd_overlay(a) -> int:
    renderer = OverlayRenderer(font_path=get_config().overlay.font_path)
    data = renderer.render(Dimensions(a.width, a.height), WatermarkSpec(a.text))
    Path(a.output).write_bytes(data)
    console.print(f"Overlay written: {a.output} ({len(data) / 1024:.1f} KB)")
    return 0


def _cmd_image(a) -> int:
    renderer = OverlayRenderer(font_path=get_config().overlay.font_path)
    out = ImageCompositor(renderer=renderer).watermark(Path(a.input).read_bytes(), WatermarkSpec(a.text))
    Path(a.output).write_bytes(out)
    console.print(f"Watermarked image written: {a.output}")
    return 0


def _cmd_video(a) -> int:
    cfg = get_config()
    output = Path(a.output).resolve()
    store = LocalBlobStore(output.parent)
    sink = store.streaming_upload_sink(".", output.name, "video/mp4")
    pipeline = StreamingTranscodePipeline.from_config(cfg)
    outcome = asyncio.run(pipeline.watermark(a.source, WatermarkSpec(a.text), sink))
    outcome.raise_for_outcome()
    console.print(f"Watermarked video written: {output}")
    return 0


def main(args=None) -> int:
    parser = argparse.ArgumentParser(
        prog="watermark-worker",
        description="Watermark Worker - text watermarks for images and streamed video",
    )
    parser.add_argument("--config", default=None, help="YAML config file (default: config/config.yaml)")

    sub = parser.add_subparsers(dest="command")

    rj = sub.add_parser("run-job", help="Execute a single job record")
    rj.add_argument("job", help="Path to a JSON job record")

    wk = sub.add_parser("worker", help="Process job records one at a time")
    wk.add_argument("jobs", help="JSON lines file of job records, or - for stdin")

    ov = sub.add_parser("overlay", help="Render a watermark overlay PNG")
    ov.add_argument("width", type=int)
    ov.add_argument("height", type=int)
    ov.add_argument("text", help="Watermark text (use \\n for extra lines)")
    ov.add_argument("-o", "--output", default="overlay.png")

    im = sub.add_parser("image", help="Watermark a local image file")
    im.add_argument("input")
    im.add_argument("output")
    im.add_argument("--text", required=True)

    vd = sub.add_parser("video", help="Watermark a video (path or URL) into a local MP4")
    vd.add_argument("source")
    vd.add_argument("output")
    vd.add_argument("--text", required=True)

    a = parser.parse_args(args=args)
    if getattr(a, "text", None):
        a.text = a.text.replace("\\n", "\n")

    try:
        if a.config:
            set_config(load_config(Path(a.config)))
        setup_logging()

        if a.command == "run-job":
            a.jobs = a.job
            return _cmd_worker(a)
        if a.command == "worker":
            return _cmd_worker(a)
        if a.command == "overlay":
            return _cmd_overlay(a)
        if a.command == "image":
            return _cmd_image(a)
        if a.command == "video":
            return _cmd_video(a)
    except (WatermarkError, ValueError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())

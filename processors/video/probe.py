"""
Video dimension probe (ffprobe)

Local paths and remote URLs are handed to ffprobe as-is; it issues ranged
reads itself, so the asset body is never downloaded here.
"""

import asyncio
import json
from typing import List

from core.errors import ProbeError
from core.models import Dimensions
from core.utils.logging import get_logger

logger = get_logger(__name__)


def build_probe_command(source: str, ffprobe: str = "ffprobe") -> List[str]:
    return [
        ffprobe, "-v", "error", "-select_streams", "v:0",
        "-show_entries", "stream=width,height", "-of", "json",
        str(source),
    ]


def parse_probe_report(report: str) -> Dimensions:
    try:
        data = json.loads(report)
        stream = data["streams"][0]
        return Dimensions(int(stream["width"]), int(stream["height"]))
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProbeError(f"Unparseable ffprobe report: {e}") from e


async def probe_dimensions(source: str, ffprobe: str = "ffprobe") -> Dimensions:
    cmd = build_probe_command(source, ffprobe)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProbeError(f"Cannot run {ffprobe}: {e}") from e

    stdout, stderr = await proc.communicate()
    err_text = stderr.decode(errors="replace").strip() if stderr else ""
    if proc.returncode != 0:
        logger.error(f"ffprobe exited {proc.returncode}: {err_text[-300:]}")
        raise ProbeError(f"ffprobe exited with code {proc.returncode}", proc.returncode, err_text)

    dims = parse_probe_report(stdout.decode(errors="replace"))
    logger.info(f"Probed {dims.width}x{dims.height}")
    return dims

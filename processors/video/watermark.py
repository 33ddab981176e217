"""
Streaming video watermark pipeline (FFmpeg overlay -> stdout -> sink)

ffmpeg reads the source (path or URL) and the rendered overlay PNG, composites
the overlay onto every frame and writes a fragmented MP4 to stdout. The stdout
stream goes straight to a sink (e.g. a blob upload) so the asset is never
buffered whole. A run is finished only once both the process exit and the sink
have settled.
"""

import asyncio
import re
import shutil
import tempfile
import time
from collections import deque
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Deque, List, Optional, Union

from core.constants import (
    FRAGMENTED_MOVFLAGS,
    OVERLAY_FILENAME,
    OVERLAY_FILTER,
    SCRATCH_PREFIX,
    OutcomeKind,
    PipelineState,
)
from core.errors import ProbeError
from core.models import PipelineOutcome, Sink, WatermarkSpec
from core.utils.logging import get_logger
from processors.image.overlay import OverlayRenderer
from processors.video.probe import probe_dimensions

logger = get_logger(__name__)

DIAGNOSTIC_LINES = 50
STDERR_READ_SIZE = 4096
# Transcoder errors that only echo a vanished consumer
NONSPECIFIC_MARKERS = ("broken pipe", "connection reset", "end of file")


class PrematureSinkReturn(RuntimeError):
    pass


class PrimedStream:
    """Transcoder stdout with its first chunk already pulled off."""

    def __init__(self, first: bytes, reader: asyncio.StreamReader):
        self._first = first
        self._reader = reader

    async def read(self, n: int = -1) -> bytes:
        if n == 0:
            return b""
        if not self._first:
            return await self._reader.read(n)
        if n < 0:
            chunk, self._first = self._first, b""
            return chunk + await self._reader.read(-1)
        chunk, self._first = self._first[:n], self._first[n:]
        return chunk

    def at_eof(self) -> bool:
        return not self._first and self._reader.at_eof()


class TranscodeContext:
    """Per-invocation state: state trail, scratch dir, timings."""

    def __init__(self, source: str, label: str = ""):
        self.source = source
        self.label = label or "[PIPELINE]"
        self.status: Optional[PipelineState] = None
        self.states: List[PipelineState] = []
        self.working_dir: Optional[Path] = None
        self.start_time = time.time()
        self.end_time: Optional[float] = None

    def advance(self, state: PipelineState):
        self.status = state
        self.states.append(state)
        logger.debug(f"{self.label} -> {state.value}")

    def finish(self, kind: OutcomeKind, **kwargs) -> PipelineOutcome:
        self.advance(PipelineState.SUCCESS if kind is OutcomeKind.SUCCESS else PipelineState.FAILED)
        self.end_time = time.time()
        outcome = PipelineOutcome(kind, states=list(self.states), **kwargs)
        logger.info(f"{self.label} Pipeline {kind.value} in {self.end_time - self.start_time:.1f}s")
        return outcome


def redact(source: str) -> str:
    return str(source).split("?", 1)[0]


def is_nonspecific_failure(exit_code: Optional[int], diagnostics: str, killed: bool = False) -> bool:
    if killed or exit_code is None or exit_code < 0:
        return True
    text = diagnostics.lower()
    return not text.strip() or any(marker in text for marker in NONSPECIFIC_MARKERS)


def _kill(proc: asyncio.subprocess.Process):
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def _task_error(task: asyncio.Future) -> Optional[BaseException]:
    if task.cancelled():
        return asyncio.CancelledError("sink cancelled")
    return task.exception()


@asynccontextmanager
async def reaped(proc: asyncio.subprocess.Process, grace: float):
    """Owns ``proc``: on exit it is killed if still running and always reaped."""
    try:
        yield proc
    finally:
        if proc.returncode is None:
            _kill(proc)
            try:
                await asyncio.wait_for(proc.wait(), timeout=grace)
            except asyncio.TimeoutError:
                logger.error(f"ffmpeg pid {proc.pid} did not exit within {grace}s of SIGKILL")


class StreamingTranscodePipeline:
    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        renderer: Optional[OverlayRenderer] = None,
        preset: str = "fast",
        crf: int = 23,
        scratch_root: Optional[Union[str, Path]] = None,
        chunk_size: int = 4 * 1024 * 1024,
        kill_grace: float = 5.0,
    ):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.renderer = renderer or OverlayRenderer()
        self.preset = preset
        self.crf = crf
        self.scratch_root = Path(scratch_root) if scratch_root else None
        self.chunk_size = chunk_size
        self.kill_grace = kill_grace

    @classmethod
    def from_config(cls, cfg, renderer: Optional[OverlayRenderer] = None) -> "StreamingTranscodePipeline":
        t = cfg.transcoder
        return cls(
            ffmpeg=t.ffmpeg,
            ffprobe=t.ffprobe,
            renderer=renderer or OverlayRenderer(font_path=cfg.overlay.font_path),
            preset=t.preset,
            crf=t.crf,
            scratch_root=cfg.paths.scratch_dir,
            chunk_size=t.chunk_size,
            kill_grace=t.kill_grace,
        )

    def build_command(self, source: str, overlay_path: Union[str, Path]) -> List[str]:
        return [
            self.ffmpeg, "-hide_banner", "-loglevel", "error",
            "-i", str(source),
            "-i", str(overlay_path),
            "-filter_complex", OVERLAY_FILTER,
            "-c:v", "libx264", "-preset", self.preset, "-crf", str(self.crf),
            "-c:a", "copy",
            "-movflags", FRAGMENTED_MOVFLAGS,
            "-f", "mp4",
            "pipe:1",
        ]

    async def watermark(self, source: str, spec: WatermarkSpec, sink: Sink, label: str = "") -> PipelineOutcome:
        """Probe, render the overlay into a scratch dir, then stream-transcode."""
        ctx = TranscodeContext(source, label)
        if self.scratch_root:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        ctx.working_dir = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=self.scratch_root))
        try:
            ctx.advance(PipelineState.PROBING)
            try:
                dims = await probe_dimensions(source, self.ffprobe)
            except ProbeError as e:
                logger.error(f"{ctx.label} Probe failed for {redact(source)}: {e}")
                return ctx.finish(OutcomeKind.PROBE_FAILED, error=e, exit_code=e.exit_code, diagnostics=e.stderr)

            ctx.advance(PipelineState.RENDERING)
            loop = asyncio.get_running_loop()
            overlay = await loop.run_in_executor(None, self.renderer.render, dims, spec)
            overlay_path = ctx.working_dir / OVERLAY_FILENAME
            overlay_path.write_bytes(overlay)

            return await self._transcode(ctx, overlay_path, sink)
        finally:
            self._cleanup(ctx)

    async def run(self, source: str, overlay_path: Union[str, Path], sink: Sink, label: str = "") -> PipelineOutcome:
        return await self._transcode(TranscodeContext(source, label), Path(overlay_path), sink)

    async def _transcode(self, ctx: TranscodeContext, overlay_path: Path, sink: Sink) -> PipelineOutcome:
        cmd = self.build_command(ctx.source, overlay_path)
        logger.info(f"{ctx.label} Starting stream transcoding of {redact(ctx.source)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"{ctx.label} Cannot start {self.ffmpeg}: {e}")
            return ctx.finish(OutcomeKind.TRANSCODE_FAILED, diagnostics=str(e), error=e)

        ctx.advance(PipelineState.SPAWNED)
        async with reaped(proc, self.kill_grace):
            return await self._join(proc, sink, ctx)

    async def _join(self, proc: asyncio.subprocess.Process, sink: Sink, ctx: TranscodeContext) -> PipelineOutcome:
        tail: Deque[str] = deque(maxlen=DIAGNOSTIC_LINES)
        stderr_task = asyncio.ensure_future(self._drain_stderr(proc.stderr, tail, ctx.label))
        exit_task = asyncio.ensure_future(proc.wait())
        sink_task: Optional[asyncio.Future] = None
        discard_task: Optional[asyncio.Future] = None
        sink_error: Optional[BaseException] = None
        sink_cancelled = False
        killed = False

        try:
            first = await proc.stdout.read(self.chunk_size)
            if not first:
                await asyncio.wait({exit_task})

            if first or exit_task.result() == 0:
                ctx.advance(PipelineState.STREAMING)
                stream = PrimedStream(first, proc.stdout)
                sink_task = asyncio.ensure_future(sink(stream))

                done, _ = await asyncio.wait({exit_task, sink_task}, return_when=asyncio.FIRST_COMPLETED)
                if sink_task in done and not exit_task.done():
                    sink_error = _task_error(sink_task)
                    if sink_error is None and not stream.at_eof():
                        sink_error = PrematureSinkReturn("sink returned before the end of the stream")
                    if sink_error is not None and stream.at_eof():
                        # stdout is closed; the process is already on its way out.
                        await asyncio.wait({exit_task}, timeout=self.kill_grace)
                    if sink_error is not None and not exit_task.done():
                        # Nobody consumes stdout any more.
                        logger.warning(f"{ctx.label} Sink stopped while ffmpeg still running; killing pid {proc.pid}")
                        killed = True
                        _kill(proc)
                        discard_task = asyncio.ensure_future(self._discard(proc.stdout))
                elif exit_task.result() != 0 and not sink_task.done():
                    # Output is truncated; the sink must not commit it.
                    logger.warning(f"{ctx.label} Transcoder failed mid-stream; cancelling sink")
                    sink_cancelled = True
                    sink_task.cancel()

                await asyncio.wait({exit_task, sink_task})
                if discard_task is not None:
                    await discard_task
            else:
                logger.info(f"{ctx.label} Transcoder produced no output; sink not started")

            ctx.advance(PipelineState.JOINED)
            await stderr_task
        finally:
            for task in (sink_task, discard_task, exit_task, stderr_task):
                if task is not None and not task.done():
                    task.cancel()

        exit_code = exit_task.result()
        diagnostics = "\n".join(tail)
        if sink_task is not None and sink_error is None and not sink_cancelled:
            sink_error = _task_error(sink_task)

        if exit_code == 0 and sink_error is None:
            return ctx.finish(OutcomeKind.SUCCESS, exit_code=0, diagnostics=diagnostics)
        if sink_error is None:
            logger.error(f"{ctx.label} ffmpeg exited {exit_code}: {diagnostics[-300:]}")
            return ctx.finish(OutcomeKind.TRANSCODE_FAILED, exit_code=exit_code, diagnostics=diagnostics)
        if exit_code == 0 or is_nonspecific_failure(exit_code, diagnostics, killed):
            logger.error(f"{ctx.label} Sink failed: {sink_error!r}")
            return ctx.finish(OutcomeKind.SINK_FAILED, exit_code=exit_code, diagnostics=diagnostics, error=sink_error)
        logger.error(f"{ctx.label} ffmpeg exited {exit_code} and sink failed ({sink_error!r}); reporting transcoder")
        return ctx.finish(OutcomeKind.TRANSCODE_FAILED, exit_code=exit_code, diagnostics=diagnostics, error=sink_error)

    async def _discard(self, stream: asyncio.StreamReader):
        while await stream.read(self.chunk_size):
            pass

    async def _drain_stderr(self, stream: asyncio.StreamReader, tail: Deque[str], label: str):
        pending = b""
        while True:
            chunk = await stream.read(STDERR_READ_SIZE)
            if not chunk:
                break
            pending += chunk
            *lines, pending = re.split(rb"[\r\n]", pending)
            for line in lines:
                self._note(line, tail, label)
        self._note(pending, tail, label)

    @staticmethod
    def _note(line: bytes, tail: Deque[str], label: str):
        text = line.decode(errors="replace").strip()
        if text:
            tail.append(text)
            logger.debug(f"{label} ffmpeg: {text}")

    @staticmethod
    def _cleanup(ctx: TranscodeContext):
        if ctx.working_dir is None:
            return
        try:
            shutil.rmtree(ctx.working_dir)
        except OSError as e:
            logger.warning(f"{ctx.label} Could not remove scratch dir {ctx.working_dir}: {e}")

"""Shared pytest fixtures for the watermark worker test suite."""

import io
import sys
import textwrap
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest
from PIL import Image

from core.config import set_config


class BytesStream:
    """In-memory ByteStream for driving sinks without a subprocess."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + n]
        self._pos += len(chunk)
        return chunk

    def at_eof(self) -> bool:
        return self._pos >= len(self._data)


@pytest.fixture(autouse=True)
def reset_config():
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def make_tool(tmp_path):
    """Write an executable Python script standing in for ffmpeg/ffprobe."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        path = bin_dir / name
        path.write_text(
            f"#!{sys.executable}\n"
            "import json, os, sys, time\n"
            + textwrap.dedent(body)
        )
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def fake_ffprobe(make_tool):
    def _make(width: int = 320, height: int = 240) -> str:
        return make_tool("ffprobe", f"""
            print(json.dumps({{"programs": [], "streams": [{{"width": {width}, "height": {height}}}]}}))
        """)
    return _make


@pytest.fixture
def scratch_root(tmp_path) -> Path:
    p = tmp_path / "scratch"
    p.mkdir()
    return p


def png_bytes(size=(64, 48), color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class SlowUploadSession:
    """requests.Session stand-in whose PUT consumes the body slowly."""

    def __init__(self, delay: float):
        self.delay = delay
        self.received = bytearray()
        self.finished = threading.Event()
        self.closed = False

    def put(self, url, data=None, headers=None, timeout=None):
        try:
            for chunk in data:
                self.received.extend(chunk)
                time.sleep(self.delay)
            return SimpleNamespace(status_code=201, raise_for_status=lambda: None)
        finally:
            self.finished.set()

    def close(self):
        self.closed = True

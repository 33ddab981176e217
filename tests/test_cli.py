"""Tests for the command line entry point."""

import json

from PIL import Image

from cli.commands import main
from conftest import png_bytes


def _config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"storage:\n  root: {tmp_path / 'blobs'}\nlogging:\n  level: WARNING\n")
    return str(path)


def test_overlay_command(tmp_path):
    out = tmp_path / "overlay.png"

    rc = main(["--config", _config(tmp_path), "overlay", "320", "200", "LINE ONE\\nLINE TWO", "-o", str(out)])

    assert rc == 0
    image = Image.open(out)
    assert image.size == (320, 200)
    assert image.mode == "RGBA"


def test_image_command(tmp_path):
    src = tmp_path / "in.png"
    src.write_bytes(png_bytes((90, 60)))
    dst = tmp_path / "out.png"

    rc = main(["--config", _config(tmp_path), "image", str(src), str(dst), "--text", "SAMPLE"])

    assert rc == 0
    assert Image.open(dst).size == (90, 60)


def test_image_command_rejects_garbage(tmp_path):
    src = tmp_path / "in.png"
    src.write_bytes(b"nope")

    rc = main(["--config", _config(tmp_path), "image", str(src), str(tmp_path / "out.png"), "--text", "SAMPLE"])

    assert rc == 1


def test_worker_reports_failed_jobs(tmp_path):
    jobs = tmp_path / "jobs.jsonl"
    jobs.write_text(json.dumps({"jobId": "j1", "type": "image"}) + "\n")

    assert main(["--config", _config(tmp_path), "worker", str(jobs)]) == 1


def test_missing_config_file(tmp_path):
    assert main(["--config", str(tmp_path / "absent.yaml"), "overlay", "10", "10", "X"]) == 1


def test_no_command_prints_help(tmp_path):
    assert main(["--config", _config(tmp_path)]) == 0

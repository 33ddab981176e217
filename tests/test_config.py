"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest

from core.config import Config, get_config, load_config, set_config
from core.errors import ConfigError


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


def test_defaults_when_default_file_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    cfg = load_config(env={})

    assert cfg.storage.backend == "local"
    assert cfg.transcoder.preset == "fast"
    assert cfg.transcoder.crf == 23
    assert cfg.storage.read_url_ttl == 3600


def test_yaml_values_are_coerced(tmp_path):
    path = _write(tmp_path, """
transcoder:
  preset: veryfast
  crf: "28"
  kill_grace: 2
paths:
  scratch_dir: /var/tmp/wm
storage:
  read_url_ttl: 600
""")

    cfg = load_config(path, env={})

    assert cfg.transcoder.preset == "veryfast"
    assert cfg.transcoder.crf == 28
    assert cfg.transcoder.kill_grace == 2.0
    assert cfg.paths.scratch_dir == Path("/var/tmp/wm")
    assert cfg.storage.read_url_ttl == 600
    assert cfg.logging.level == "INFO"


def test_environment_overrides_file(tmp_path):
    path = _write(tmp_path, "storage:\n  backend: local\n")

    cfg = load_config(path, env={
        "WATERMARK_STORAGE_BACKEND": "http",
        "WATERMARK_STORAGE_URL": "https://blobs.example",
        "WATERMARK_SIGNING_KEY": "secret",
        "WATERMARK_LOG_LEVEL": "DEBUG",
    })

    assert cfg.storage.backend == "http"
    assert cfg.storage.base_url == "https://blobs.example"
    assert cfg.storage.signing_key == "secret"
    assert cfg.logging.level == "DEBUG"


def test_config_path_from_environment(tmp_path):
    path = _write(tmp_path, "callback:\n  timeout: 5\n")

    cfg = load_config(env={"WATERMARK_CONFIG": str(path)})

    assert cfg.callback.timeout == 5.0


@pytest.mark.parametrize("text", [
    "transcoder:\n  presett: fast\n",
    "nonsense:\n  a: 1\n",
    "transcoder:\n  crf: high\n",
    "transcoder: [1, 2]\n",
    "- just\n- a list\n",
])
def test_invalid_files_are_rejected(tmp_path, text):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, text), env={})


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml", env={})


def test_sample_config_loads():
    sample = Path(__file__).resolve().parent.parent / "config" / "config.yaml"

    cfg = load_config(sample, env={})

    assert cfg.paths.scratch_dir == Path("data/scratch")
    assert cfg.transcoder.chunk_size == 4 * 1024 * 1024


def test_set_config_replaces_cached(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("WATERMARK_CONFIG", raising=False)
    custom = Config()
    custom.transcoder.crf = 30

    set_config(custom)

    assert get_config() is custom
    set_config(None)
    assert get_config().transcoder.crf == 23

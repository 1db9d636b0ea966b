from __future__ import annotations

from pathlib import Path

import pytest

from ffwrap.command_runner import SubprocessProcessRunner
from ffwrap.config import ConfigError, ConfigLoader
from ffwrap.invoker import FFmpeg, FFprobe, Invoker


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FFWRAP_CONFIG", "FFMPEG", "FFPROBE"):
        monkeypatch.delenv(name, raising=False)


def _write_yaml(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_defaults_without_config_file() -> None:
    config = ConfigLoader().load()

    assert config.invoker.ffmpeg_path == "ffmpeg"
    assert config.invoker.ffprobe_path == "ffprobe"
    assert config.invoker.timeout_seconds == 5
    assert config.invoker.stderr == "merge"
    assert config.invoker.check_exit_code is True
    assert config.invoker.decode_errors == "replace"
    assert config.invoker.working_directory is None
    assert config.logging.level == "INFO"
    assert config.logging.file_path is None


def test_file_values_merge_over_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(
        config_path,
        f"""
invoker:
  ffmpeg_path: "/opt/ffmpeg/bin/ffmpeg"
  timeout_seconds: 2.5
  stderr: devnull
  working_directory: "{tmp_path}"
logging:
  level: debug
  file_path: "logs/ffwrap.log"
""",
    )

    config = ConfigLoader(config_path=config_path).load()

    assert config.invoker.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert config.invoker.ffprobe_path == "ffprobe"
    assert config.invoker.timeout_seconds == 2.5
    assert config.invoker.stderr == "devnull"
    assert config.invoker.working_directory == tmp_path
    assert config.logging.level == "DEBUG"
    assert config.logging.file_path == Path("logs/ffwrap.log")


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "ffwrap.yml"
    _write_yaml(config_path, "invoker:\n  check_exit_code: false\n")
    monkeypatch.setenv("FFWRAP_CONFIG", str(config_path))

    config = ConfigLoader().load()

    assert config.invoker.check_exit_code is False


def test_binary_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(config_path, "invoker:\n  ffprobe_path: /usr/bin/ffprobe\n")
    monkeypatch.setenv("FFPROBE", "/usr/local/bin/ffprobe")

    config = ConfigLoader(config_path=config_path).load()

    assert config.invoker.ffprobe_path == "/usr/local/bin/ffprobe"


def test_missing_explicit_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        ConfigLoader(config_path=tmp_path / "missing.yml").load()


def test_non_mapping_root_raises(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(config_path, "- just\n- a list\n")

    with pytest.raises(ConfigError):
        ConfigLoader(config_path=config_path).load()


def test_malformed_yaml_raises(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(config_path, "invoker: [unclosed\n")

    with pytest.raises(ConfigError):
        ConfigLoader(config_path=config_path).load()


@pytest.mark.parametrize(
    "snippet",
    [
        "invoker:\n  ffmpeg_path: '  '\n",
        "invoker:\n  timeout_seconds: 0\n",
        "invoker:\n  timeout_seconds: soon\n",
        "invoker:\n  drain_timeout_seconds: -1\n",
        "invoker:\n  stderr: pipe\n",
        "invoker:\n  decode_errors: ignore\n",
        "invoker:\n  working_directory: /does/not/exist/ffwrap\n",
        "invoker: null\n",
        "logging:\n  level: chatty\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, snippet: str) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(config_path, snippet)

    with pytest.raises(ConfigError):
        ConfigLoader(config_path=config_path).load()


def test_invokers_built_from_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_yaml(
        config_path,
        "invoker:\n  ffmpeg_path: /opt/ffmpeg\n  ffprobe_path: /opt/ffprobe\n  stderr: inherit\n",
    )
    config = ConfigLoader(config_path=config_path).load()

    ffmpeg = FFmpeg.from_config(config.invoker)
    ffprobe = FFprobe.from_config(config.invoker)
    explicit = Invoker.from_config(config.invoker, path="/usr/bin/ffmpeg")

    assert ffmpeg.path == "/opt/ffmpeg"
    assert ffprobe.path == "/opt/ffprobe"
    assert explicit.path == "/usr/bin/ffmpeg"
    assert isinstance(ffmpeg._runner, SubprocessProcessRunner)
    assert ffmpeg._runner.stderr == "inherit"

from __future__ import annotations

from pathlib import Path

import pytest

from flybuild.config import DEFAULT_ATC_URL, FlyConfig, load_fly_config


@pytest.fixture(autouse=True)
def _no_atc_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ATC_URL", raising=False)


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    cfg = load_fly_config(str(tmp_path / "missing"))
    assert cfg == FlyConfig()
    assert cfg.atc_url == DEFAULT_ATC_URL


def test_client_section_is_parsed(tmp_path: Path) -> None:
    path = tmp_path / "flyrc"
    path.write_text(
        "\n".join(
            [
                "[server]",
                "atcURL = http://ignored:1",
                "[client]",
                "atcURL = https://ci.example.com:443  # production",
                "connectTimeout = 2.5",
                "chunkSize = 4096",
                "unknownKey = whatever",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_fly_config(str(path))

    assert cfg.atc_url == "https://ci.example.com:443"
    assert cfg.connect_timeout == 2.5
    assert cfg.chunk_size == 4096
    assert cfg.websocket_url == "wss://ci.example.com:443"


def test_atc_url_environment_overrides_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "flyrc"
    path.write_text("[client]\natcURL = http://from-file:8080\n", encoding="utf-8")
    monkeypatch.setenv("ATC_URL", "http://from-env:9090/")

    cfg = load_fly_config(str(path))

    assert cfg.atc_url == "http://from-env:9090/"
    assert cfg.websocket_url == "ws://from-env:9090"


def test_invalid_timeout_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "flyrc"
    path.write_text("[client]\nconnectTimeout = 0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="connectTimeout"):
        load_fly_config(str(path))

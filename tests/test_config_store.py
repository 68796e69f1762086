from __future__ import annotations

from pathlib import Path

import pytest

from config import JsonConfigStore


def test_config_defaults(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "config.json")

    assert store.get_server_url() == "http://localhost:3000"
    assert store.get_hands_off() is False
    assert store.get_sample_rate() == 48000
    assert store.get_mode() == "streaming"
    assert store.get_hotkey() == "Key.alt_l"
    assert store.get("learner_id") == "L001"


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    store.set("server_url", "http://tutor.local:8080/")
    store.set_hands_off(True)
    store.set("mode", "batch")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_server_url() == "http://tutor.local:8080"
    assert reloaded.get_hands_off() is True
    assert reloaded.get_mode() == "batch"


def test_config_rejects_unknown_key_and_mode(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "config.json")

    with pytest.raises(KeyError):
        store.set("api_key", "abc")
    with pytest.raises(ValueError):
        store.set("mode", "duplex")


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_hotkey() == "Key.alt_l"
    assert store.get_sample_rate() == 48000

from pathlib import Path

import pytest

from tmsandbox.config import ConfigError, Settings


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert Settings.load() == Settings()


def test_load_file(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('speed = 50\nsave_delay = 1\nsession_file = "state.json"\n')
    settings = Settings.load(path)
    assert settings.speed == 50
    assert settings.save_delay == 1.0
    assert settings.session_file == Path("state.json")
    assert settings.history_cap == 500


def test_load_table(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("[tmsandbox]\nmax_steps = 10\n")
    assert Settings.load(path).max_steps == 10


def test_wrong_type(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('speed = "fast"\n')
    with pytest.raises(ConfigError, match="speed"):
        Settings.load(path)


def test_unknown_key():
    with pytest.raises(ConfigError, match="colour"):
        Settings.from_dict({"colour": "red"})


def test_bool_is_not_an_int():
    with pytest.raises(ConfigError):
        Settings.from_dict({"max_steps": True})


def test_bad_values():
    with pytest.raises(ConfigError):
        Settings(history_cap=10, history_drop=20)
    with pytest.raises(ConfigError):
        Settings(speed=-1)


def test_invalid_toml(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("speed = \n")
    with pytest.raises(ConfigError, match="not valid TOML"):
        Settings.load(path)


def test_overrides_skip_none():
    settings = Settings().with_overrides(speed=None, max_steps=5)
    assert settings.speed == 300
    assert settings.max_steps == 5

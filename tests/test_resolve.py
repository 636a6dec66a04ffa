from supercache.config import DEFAULT_CONFIG_PATH
from supercache.resolve import (
    first_existing_default_config_path,
    resolve_config_path_for_load,
)


def test_first_existing_and_resolve(tmp_path):
    p = tmp_path / "found.toml"
    p.write_text("x")
    candidates = [str(p)]
    assert first_existing_default_config_path(candidates) == str(p)
    assert resolve_config_path_for_load("", candidates) == str(p)


def test_first_existing_skips_missing_and_directories(tmp_path):
    d = tmp_path / "dir.toml"
    d.mkdir()
    p = tmp_path / "second.conf"
    p.write_text("x")
    candidates = [str(tmp_path / "missing.toml"), str(d), str(p)]
    assert first_existing_default_config_path(candidates) == str(p)


def test_first_existing_none_found(tmp_path):
    assert first_existing_default_config_path([str(tmp_path / "nope.toml")]) == ""


def test_resolve_falls_back_to_default(tmp_path):
    assert resolve_config_path_for_load("", [str(tmp_path / "nope.toml")]) == DEFAULT_CONFIG_PATH
    assert resolve_config_path_for_load("   ", []) == DEFAULT_CONFIG_PATH


def test_resolve_explicit_wins(tmp_path):
    p = tmp_path / "found.toml"
    p.write_text("x")
    assert resolve_config_path_for_load("/some/explicit.toml", [str(p)]) == "/some/explicit.toml"
import os

import pytest

import env_validation
from env_validation import DEFAULTS, get_env_bool, get_env_float, get_env_int, validate_environment


@pytest.fixture
def clean_env(monkeypatch):
    for name in list(DEFAULTS) + ["MODEL_ID", "LLM_ENABLED"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_are_applied(clean_env):
    validate_environment()
    assert os.environ["PRACTICE_SET_SIZE"] == "5"
    assert os.environ["LLM_URL"].startswith("http://")


def test_bad_url_is_rejected(clean_env):
    clean_env.setenv("LLM_URL", "ftp://example.org")
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()


@pytest.mark.parametrize(
    "name,value",
    [("LLM_TIMEOUT", "soon"), ("PRACTICE_SET_SIZE", "0"), ("EMA_ALPHA", "1.5")],
)
def test_numeric_ranges(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()


def test_band_thresholds_must_be_ordered(clean_env):
    clean_env.setenv("DIFFICULTY_EASY_MAX", "0.8")
    clean_env.setenv("DIFFICULTY_MEDIUM_MAX", "0.5")
    with pytest.raises(env_validation.EnvironmentError, match="DIFFICULTY_EASY_MAX"):
        validate_environment()


def test_typed_getters(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    monkeypatch.setenv("COUNT", "7")
    monkeypatch.setenv("RATIO", "nope")
    assert get_env_bool("FLAG") is True
    assert get_env_bool("MISSING_FLAG", True) is True
    assert get_env_int("COUNT", 1) == 7
    assert get_env_float("RATIO", 0.25) == 0.25

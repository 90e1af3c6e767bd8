import importlib

import pytest

from spotmate.core import config


def test_required_key_without_default_raises(monkeypatch):
    monkeypatch.delenv("SPOTMATE_UNSET_KEY", raising=False)
    with pytest.raises(RuntimeError):
        config._get_env("SPOTMATE_UNSET_KEY")


def test_geocoder_timeout_is_optional(monkeypatch):
    monkeypatch.delenv("GEOCODER_TIMEOUT_SECONDS", raising=False)
    assert importlib.reload(config).GEOCODER_TIMEOUT_SECONDS == 5.0

    monkeypatch.setenv("GEOCODER_TIMEOUT_SECONDS", "2.5")
    assert importlib.reload(config).GEOCODER_TIMEOUT_SECONDS == 2.5

    monkeypatch.delenv("GEOCODER_TIMEOUT_SECONDS")
    importlib.reload(config)

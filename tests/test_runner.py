"""Headless runner wiring."""

from __future__ import annotations

import importlib
import sys


def test_runner_does_not_build_the_http_app(monkeypatch) -> None:
    monkeypatch.delitem(sys.modules, "aqbridge.main", raising=False)
    monkeypatch.delitem(sys.modules, "aqbridge.runner", raising=False)

    runner = importlib.import_module("aqbridge.runner")

    assert "aqbridge.main" not in sys.modules
    assert callable(runner.main)


def test_wiring_import_has_no_side_effects(monkeypatch) -> None:
    monkeypatch.delitem(sys.modules, "aqbridge.services.wiring", raising=False)
    monkeypatch.delitem(sys.modules, "aqbridge.main", raising=False)

    wiring = importlib.import_module("aqbridge.services.wiring")

    assert "aqbridge.main" not in sys.modules
    assert not hasattr(wiring, "app")

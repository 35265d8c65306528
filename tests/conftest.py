from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    for key in list(os.environ):
        if key.startswith("CHATTER_"):
            monkeypatch.delenv(key)
    # Keep a developer's .env out of Settings.
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))

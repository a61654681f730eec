"""Pytest configuration ensuring project root is importable.

Adds repository root and src/ to sys.path explicitly to avoid
interpreter/path quirks.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_config_env():  # noqa: D401
    """Ensure global config/metrics side effects do not leak between tests.

    - Clear aggregated config cache between tests
    - Restore FLOWDESK_CONFIG_DIR and FLOWDESK__* overrides
    - Reset in-memory metrics and event listeners
    """
    from flowcore import eventbus, metrics
    from flowcore.config import clear_config_cache
    from flowcore.events import reset_listeners_for_tests

    saved = {
        k: v
        for k, v in os.environ.items()
        if k == "FLOWDESK_CONFIG_DIR" or k.startswith("FLOWDESK__")
    }
    clear_config_cache()
    metrics.reset_for_tests()
    try:
        yield
    finally:
        clear_config_cache()
        reset_listeners_for_tests()
        eventbus.reset_for_tests()
        for k in list(os.environ):
            if k == "FLOWDESK_CONFIG_DIR" or k.startswith("FLOWDESK__"):
                os.environ.pop(k, None)
        os.environ.update(saved)


@pytest.fixture()
def config_dir(tmp_path, monkeypatch):  # noqa: D401
    """Empty config dir (schema defaults) with a fast mock agent."""
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir()
    cfg_dir.joinpath("base.yaml").write_text(
        "agent:\n  chunk_delay_ms: 0\n", encoding="utf-8"
    )
    monkeypatch.setenv("FLOWDESK_CONFIG_DIR", str(cfg_dir))
    return cfg_dir

"""
Async Emitter Test Configuration

Shared fixtures for all tests.
"""

import os
import sys
import tempfile
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from async_emitter import AsyncEventEmitter, EmitterConfig, set_config, set_emitter
from async_emitter.config import reset_config


# Isolate every test from ASYNC_EMITTER_* variables and global instances
@pytest.fixture(autouse=True)
def isolated_globals(monkeypatch):
    for key in list(os.environ):
        if key.startswith("ASYNC_EMITTER_"):
            monkeypatch.delenv(key)
    set_config(EmitterConfig())
    set_emitter(None)
    yield
    reset_config()
    set_emitter(None)


# Temporary directory for config files
@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings():
    return EmitterConfig()


@pytest.fixture
def emitter(settings):
    return AsyncEventEmitter(settings=settings)

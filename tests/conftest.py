"""Pytest fixtures shared across the OpenWarden test suite."""

import pytest

from fakes import FakeBody, ScriptedPathfinder, fast_config


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def body():
    return FakeBody()


@pytest.fixture
def pathfinder():
    return ScriptedPathfinder()

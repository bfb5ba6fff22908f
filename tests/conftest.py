"""Shared fixtures for moonbridge tests."""

import pytest

from moonbridge import LuaSession


@pytest.fixture
def session():
    """A fresh Lua session, closed after the test."""
    with LuaSession() as lua:
        yield lua

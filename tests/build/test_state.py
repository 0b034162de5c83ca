"""Unit tests for BuildState accessors."""

import pytest

from imgbake.build.state import BuildState
from imgbake.errors import InstanceFailedError, NotYetSetError, StateTimeoutError


@pytest.fixture
def state(make_config, fake_client):
    return BuildState(config=make_config(), client=fake_client)


def test_require_unset_value_raises(state):
    with pytest.raises(NotYetSetError, match="instance_id"):
        state.require("instance_id")


def test_require_returns_value_once_set(state):
    state.public_ip = "169.50.10.20"
    assert state.require("public_ip") == "169.50.10.20"


def test_halt_keeps_first_error(state):
    first = StateTimeoutError("too slow")
    state.halt(first)
    state.halt(InstanceFailedError("later"))
    assert state.error is first


def test_succeeded_requires_image_and_no_error(state):
    assert not state.succeeded
    state.image_id = "2468"
    assert state.succeeded
    state.cancelled = True
    assert not state.succeeded


def test_default_ui_logger(state):
    assert state.ui.name == "imgbake.ui"

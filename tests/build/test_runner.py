"""Unit tests for the step runner: ordering, halting, cleanup unwinding, cancellation."""

import asyncio

import pytest

from imgbake.build.runner import BuildStatus, StepRunner
from imgbake.build.state import BuildState
from imgbake.build.step import Step, StepAction
from imgbake.errors import InstanceFailedError


class RecordingStep(Step):
    """Step that appends run/cleanup events to a shared journal."""

    def __init__(self, name, journal, action=StepAction.CONTINUE, error=None, raises=None, cleanup_raises=None):
        self.name = name
        self.journal = journal
        self.action = action
        self.error = error
        self.raises = raises
        self.cleanup_raises = cleanup_raises

    async def run(self, state):
        self.journal.append(("run", self.name))
        if self.raises:
            raise self.raises
        if self.error:
            state.halt(self.error)
        return self.action

    async def cleanup(self, state):
        self.journal.append(("cleanup", self.name))
        if self.cleanup_raises:
            raise self.cleanup_raises


@pytest.fixture
def state(make_config, fake_client):
    return BuildState(config=make_config(), client=fake_client)


def _steps(journal, n, **by_index):
    return [RecordingStep(f"s{i}", journal, **by_index.get(i, {})) for i in range(n)]


# ── Normal completion ─────────────────────────────────────────────


async def test_runs_all_steps_in_order_then_cleans_up_in_reverse(state):
    journal = []
    runner = StepRunner(_steps(journal, 3))

    status = await runner.run(state)

    assert journal == [
        ("run", "s0"),
        ("run", "s1"),
        ("run", "s2"),
        ("cleanup", "s2"),
        ("cleanup", "s1"),
        ("cleanup", "s0"),
    ]
    assert status is BuildStatus.SUCCEEDED
    assert runner.status is BuildStatus.SUCCEEDED


async def test_runner_can_only_run_once(state):
    runner = StepRunner([])
    await runner.run(state)
    with pytest.raises(RuntimeError, match="only be run once"):
        await runner.run(state)


# ── Halting ───────────────────────────────────────────────────────


@pytest.mark.parametrize("halt_index", [0, 1, 2, 3])
async def test_halt_cleans_up_every_started_step_once_in_reverse(state, halt_index):
    journal = []
    err = InstanceFailedError("boom")
    steps = _steps(journal, 4, **{halt_index: {"action": StepAction.HALT, "error": err}})

    status = await StepRunner(steps).run(state)

    runs = [name for kind, name in journal if kind == "run"]
    cleanups = [name for kind, name in journal if kind == "cleanup"]
    assert runs == [f"s{i}" for i in range(halt_index + 1)]
    assert cleanups == list(reversed(runs))
    assert status is BuildStatus.FAILED
    assert state.error is err


async def test_error_without_halt_action_still_stops(state):
    journal = []
    steps = _steps(journal, 3, **{0: {"error": InstanceFailedError("failed")}})

    await StepRunner(steps).run(state)

    assert ("run", "s1") not in journal


async def test_unexpected_exception_becomes_terminal_error(state):
    journal = []
    boom = KeyError("instance_id")
    steps = _steps(journal, 3, **{1: {"raises": boom}})

    status = await StepRunner(steps).run(state)

    assert status is BuildStatus.FAILED
    assert state.error is boom
    assert journal[-2:] == [("cleanup", "s1"), ("cleanup", "s0")]


async def test_cleanup_failure_is_logged_not_raised(state, caplog):
    journal = []
    original = InstanceFailedError("original")
    steps = _steps(
        journal,
        3,
        **{
            0: {"cleanup_raises": OSError("disk gone")},
            1: {"cleanup_raises": RuntimeError("cleanup exploded")},
            2: {"action": StepAction.HALT, "error": original},
        },
    )

    with caplog.at_level("WARNING"):
        status = await StepRunner(steps).run(state)

    assert state.error is original
    assert status is BuildStatus.FAILED
    assert [name for kind, name in journal if kind == "cleanup"] == ["s2", "s1", "s0"]
    assert "cleanup exploded" in caplog.text
    assert "disk gone" in caplog.text


# ── Cancellation ──────────────────────────────────────────────────


async def test_cancel_event_stops_before_next_step(state):
    journal = []
    cancel = asyncio.Event()

    class CancellingStep(RecordingStep):
        async def run(self, state):
            await super().run(state)
            cancel.set()
            return StepAction.CONTINUE

    steps = [RecordingStep("s0", journal), CancellingStep("s1", journal), RecordingStep("s2", journal)]

    status = await StepRunner(steps).run(state, cancel)

    assert journal == [("run", "s0"), ("run", "s1"), ("cleanup", "s1"), ("cleanup", "s0")]
    assert status is BuildStatus.CANCELLED
    assert state.cancelled is True
    assert state.error is None


async def test_cancel_before_start_runs_nothing(state):
    journal = []
    cancel = asyncio.Event()
    cancel.set()

    status = await StepRunner(_steps(journal, 2)).run(state, cancel)

    assert journal == []
    assert status is BuildStatus.CANCELLED


async def test_task_cancellation_unwinds_then_propagates(state):
    journal = []
    started = asyncio.Event()

    class BlockingStep(RecordingStep):
        async def run(self, state):
            await super().run(state)
            started.set()
            await asyncio.sleep(3600)
            return StepAction.CONTINUE

    steps = [RecordingStep("s0", journal), BlockingStep("s1", journal), RecordingStep("s2", journal)]
    runner = StepRunner(steps)
    task = asyncio.create_task(runner.run(state))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert journal == [("run", "s0"), ("run", "s1"), ("cleanup", "s1"), ("cleanup", "s0")]
    assert runner.status is BuildStatus.CANCELLED
    assert state.cancelled is True


async def test_task_cancellation_is_visible_to_cleanups(state):
    seen = []
    started = asyncio.Event()

    class ObservingStep(Step):
        name = "observing"

        async def run(self, state):
            started.set()
            await asyncio.sleep(3600)
            return StepAction.CONTINUE

        async def cleanup(self, state):
            seen.append(state.cancelled)

    task = asyncio.create_task(StepRunner([ObservingStep()]).run(state))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert seen == [True]

"""Step runner: execute steps in order, then unwind cleanups in reverse."""

import asyncio
import contextlib
import enum
import logging

from imgbake.build.step import StepAction

logger = logging.getLogger(__name__)


class BuildStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepRunner:
    """Runs a fixed sequence of steps against one BuildState.

    Steps run strictly one after another. The sequence stops at the first
    step that halts or records an error, or before the next step once
    *cancel_event* is set. Every step whose run phase started gets its
    cleanup called exactly once, in reverse order, no matter how the
    sequence ended. Cleanup failures are logged and never replace the
    build's error.

    Cancelling the task running ``run()`` interrupts the current step; the
    accumulated cleanups still run before the CancelledError propagates.
    """

    def __init__(self, steps):
        self.steps = list(steps)
        self.ran = []
        self.status = BuildStatus.PENDING

    async def run(self, state, cancel_event=None) -> BuildStatus:
        if self.status is not BuildStatus.PENDING:
            raise RuntimeError("a StepRunner can only be run once")
        self.status = BuildStatus.RUNNING

        async with contextlib.AsyncExitStack() as unwind:
            try:
                for step in self.steps:
                    if cancel_event is not None and cancel_event.is_set():
                        logger.info(f"Build cancelled before {step.name}.")
                        state.cancelled = True
                        break
                    self.ran.append(step)
                    unwind.push_async_callback(self._cleanup, step, state)
                    action = await self._run_step(step, state)
                    if action is StepAction.HALT or state.error is not None:
                        break
            except asyncio.CancelledError:
                # Cleanups must see the cancellation
                state.cancelled = True
                self.status = BuildStatus.CANCELLED
                raise

        if state.error is not None:
            self.status = BuildStatus.FAILED
        elif state.cancelled:
            self.status = BuildStatus.CANCELLED
        else:
            self.status = BuildStatus.SUCCEEDED
        return self.status

    async def _run_step(self, step, state):
        logger.debug(f"Running step {step.name}")
        try:
            return await step.run(state)
        except Exception as e:
            logger.debug(f"Step {step.name} raised", exc_info=True)
            state.halt(e)
            return StepAction.HALT

    async def _cleanup(self, step, state):
        logger.debug(f"Cleaning up step {step.name}")
        try:
            await step.cleanup(state)
        except Exception as e:
            logger.warning(f"Cleanup of {step.name} failed: {e}")

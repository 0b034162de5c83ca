"""Step abstraction: a unit of build work with run and cleanup phases."""

import enum


class StepAction(enum.Enum):
    CONTINUE = "continue"
    HALT = "halt"


class Step:
    """Base class for build steps.

    ``run`` returns StepAction.HALT to stop the sequence, normally after
    recording the cause with ``state.halt(error)``. ``cleanup`` is called
    once for every step whose ``run`` was started, in reverse order, whether
    the build succeeded or not; it must tolerate state its own ``run`` never
    got to set.
    """

    name = "step"

    async def run(self, state) -> StepAction:
        raise NotImplementedError

    async def cleanup(self, state) -> None:
        return None

    def __repr__(self):
        return f"<{type(self).__name__}>"

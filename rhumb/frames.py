"""Call frames linked into a cactus stack."""

from dataclasses import dataclass

from rhumb.values import Closure


@dataclass(eq=False)
class CallFrame:
    """An activation record; frames live on the heap and link to their caller."""

    closure: Closure
    parent: "CallFrame | None" = None
    ip: int = 0
    base: int = 0
    monitor: Closure | None = None

    def depth(self) -> int:
        """Number of frames from this one up to the root, inclusive."""
        count = 0
        frame: CallFrame | None = self
        while frame is not None:
            count += 1
            frame = frame.parent
        return count
"""Simple timing context manager dataclass."""

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class Timer:
    start_time: float = 0.0
    stop_time: float = 0.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __enter__(self) -> "Timer":
        self.start_time = self.clock()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop_time = self.clock()

    @property
    def elapsed(self) -> float:
        return self.stop_time - self.start_time

    @property
    def seconds(self) -> int:
        """Elapsed time rounded to whole seconds, as reported to clients."""
        return int(round(self.elapsed))

"""
Test helper functions for the distributed limiters.
"""

import asyncio
from typing import List


class FakeClock:
    """Manually advanced clock whose sleep moves time forward.

    ``sleep`` yields to the event loop once, so other tasks still interleave.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    @property
    def slept(self) -> float:
        return sum(self.sleeps)


class DenialRecorder:
    """Callback that records which names were denied."""

    def __init__(self, result: str = "degraded"):
        self.result = result
        self.names: List[str] = []

    def __call__(self, name: str) -> str:
        self.names.append(name)
        return self.result

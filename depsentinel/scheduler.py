"""Scheduler — re-run the orchestrator on a timer, or earlier when triggered."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from depsentinel.orchestrator import Orchestrator, RunSummary

logger = structlog.get_logger("depsentinel.scheduler")


class EngineLoop:
    """One periodic job. Sleeps *interval* seconds between runs; ``trigger`` cuts the sleep short.

    A failing run is logged and counted in ``failures``; the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = asyncio.Event()
        self.cycles = 0
        self.failures = 0
        self.last_result: int | None = None

    async def _sleep(self) -> str:
        try:
            await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return "timer"
        self.trigger.clear()
        return "trigger"

    async def loop(self) -> None:
        while True:
            woke_by = await self._sleep()
            try:
                self.last_result = await self.run_fn()
            except Exception:
                self.failures += 1
                logger.exception(
                    "engine.error", engine=self.name, woke_by=woke_by, failures=self.failures
                )
            else:
                self.failures = 0
                logger.info(
                    "engine.cycle", engine=self.name, woke_by=woke_by, result=self.last_result
                )
            self.cycles += 1


class Scheduler:
    """Starts, triggers and cancels EngineLoop tasks."""

    def __init__(self, loops: list[EngineLoop]) -> None:
        self._loops = loops
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        """Start every loop; each runs once right away."""
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        self.trigger_all()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    def trigger_all(self) -> None:
        for loop in self._loops:
            loop.trigger.set()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("scheduler.stopped")


def create_scheduler(
    orchestrator: Orchestrator,
    interval: float,
    on_summary: Callable[[RunSummary], None] | None = None,
) -> Scheduler:
    """One loop that runs every configured repository and reports proposals touched."""

    async def _run_repositories() -> int:
        summary = await orchestrator.run_all()
        if on_summary is not None:
            on_summary(summary)
        return sum(len(r.proposals) for r in summary.results)

    return Scheduler([EngineLoop("orchestrator", _run_repositories, interval)])

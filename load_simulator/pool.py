from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from .runner import ConnectFn, Runner, RunnerConfig

LOGGER = logging.getLogger("load_simulator.pool")

CONCURRENT_DEFAULT = 10
DURATION_S_DEFAULT = 10.0
INTERVAL_S_DEFAULT = 0.005


@dataclass(frozen=True)
class PoolConfig:
    concurrency: int = CONCURRENT_DEFAULT
    duration_s: float = DURATION_S_DEFAULT
    interval_s: float = INTERVAL_S_DEFAULT
    clean: bool = False
    update: bool = True


class CompletionBarrier:
    """Counter of in-flight runners that can be waited on until it drains."""

    def __init__(self) -> None:
        self._count = 0
        self._condition = threading.Condition()

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def add(self, delta: int = 1) -> None:
        with self._condition:
            self._count += delta
            if self._count < 0:
                raise ValueError("negative completion barrier counter")
            if self._count == 0:
                self._condition.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout=timeout)


class RunnerPool:
    """Runs ``concurrency`` runners on their own threads and stops them together."""

    def __init__(
        self,
        config: PoolConfig,
        template: dict[str, Any],
        connect_fn: ConnectFn,
        logger: logging.Logger | None = None,
    ) -> None:
        if config.concurrency < 0:
            raise ValueError("concurrency must be >= 0")
        if not config.clean and config.interval_s <= 0:
            raise ValueError("interval must be > 0")
        self._config = config
        self._template = template
        self._connect_fn = connect_fn
        self._logger = logger or LOGGER

        self.stop_event = threading.Event()
        self.barrier = CompletionBarrier()
        self.runners: list[Runner] = []
        self._threads: list[threading.Thread] = []
        self._stop_lock = threading.Lock()

    def start(self) -> None:
        for idx in range(self._config.concurrency):
            runner = Runner(
                RunnerConfig(
                    identity=str(idx),
                    interval_s=self._config.interval_s,
                    update=self._config.update,
                    clean=self._config.clean,
                ),
                template=self._template,
                stop_event=self.stop_event,
                barrier=self.barrier,
                connect_fn=self._connect_fn,
                logger=self._logger.getChild(f"runner-{idx}"),
            )
            self.runners.append(runner)

            # Reserve the slot before the thread exists so wait() cannot
            # return ahead of a runner that has not started yet.
            self.barrier.add()
            thread = threading.Thread(target=runner.run, name=f"runner-{idx}")
            self._threads.append(thread)
            thread.start()

        self._logger.info("test %d templates", self._config.concurrency)

    def run(self, interrupt: threading.Event | None = None) -> None:
        """Start every runner, then stop them on deadline or interrupt.

        In clean-only mode this returns as soon as the runners are dispatched;
        they finish their delete on their own threads. SIGINT and SIGTERM reach
        this method as ``KeyboardInterrupt`` and count as an interrupt.
        """
        started_at = time.monotonic()
        interrupt = interrupt or threading.Event()
        try:
            self.start()
            if self._config.clean:
                return
            interrupted = interrupt.wait(timeout=self._config.duration_s)
        except KeyboardInterrupt:
            interrupted = True

        if interrupted:
            self._logger.info("system interrupt")
        else:
            self._logger.info("stop after %.3f seconds", time.monotonic() - started_at)

        self.stop()
        self.wait()

    def stop(self) -> None:
        with self._stop_lock:
            if self.stop_event.is_set():
                return
            self.stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self.barrier.wait(timeout=timeout)


__all__ = [
    "CONCURRENT_DEFAULT",
    "CompletionBarrier",
    "DURATION_S_DEFAULT",
    "INTERVAL_S_DEFAULT",
    "PoolConfig",
    "RunnerPool",
]

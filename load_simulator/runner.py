from __future__ import annotations

import copy
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from .retry import CONNECT_ATTEMPTS, CONNECT_DELAY_S, RetryError, retry_call
from .session import AlreadyExistsError, ApiError, ApiSession, ConnectError, NotFoundError
from .template import instantiate_template, object_key, object_name, object_namespace

if TYPE_CHECKING:
    from .pool import CompletionBarrier

UPDATE_LABEL = "hello"

ConnectFn = Callable[[dict[str, Any]], ApiSession]


class RunnerState(str, enum.Enum):
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    CREATING = "creating"
    LOOPING = "looping"
    IDLE = "idle"
    DELETING = "deleting"
    DONE = "done"


@dataclass(frozen=True)
class RunnerConfig:
    identity: str
    interval_s: float
    update: bool = True
    clean: bool = False
    connect_attempts: int = CONNECT_ATTEMPTS
    connect_delay_s: float = CONNECT_DELAY_S


class Runner:
    """Drives one resource through create, periodic update and delete.

    The runner owns its copy of the template and its own API session. The stop
    event and the completion barrier are the only state shared with other
    runners; the barrier slot must be reserved by whoever dispatches the runner
    and is released here once teardown finished.
    """

    def __init__(
        self,
        config: RunnerConfig,
        template: dict[str, Any],
        stop_event: threading.Event,
        barrier: CompletionBarrier,
        connect_fn: ConnectFn,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._template = template
        self._stop_event = stop_event
        self._barrier = barrier
        self._connect_fn = connect_fn
        self._logger = logger

        self.state = RunnerState.INITIALIZING
        self.desired: dict[str, Any] = {}
        self.observed: dict[str, Any] | None = None
        self.ticks = 0
        self._session: ApiSession | None = None
        self._suffix = 1

    @property
    def identity(self) -> str:
        return self._config.identity

    def run(self) -> None:
        try:
            self._initialise()
            if self._config.clean:
                self._delete()
            else:
                self._apply()
        except Exception:  # noqa: BLE001
            self._logger.exception("runner %s failed", self.identity)
        finally:
            try:
                self._close_session()
            finally:
                self.state = RunnerState.DONE
                self._barrier.done()

    def _initialise(self) -> None:
        self.state = RunnerState.INITIALIZING
        self.desired = instantiate_template(self._template, self.identity)

    def _connect(self) -> bool:
        self.state = RunnerState.CONNECTING
        try:
            self._session = retry_call(
                lambda: self._connect_fn(self.desired),
                attempts=self._config.connect_attempts,
                delay=self._config.connect_delay_s,
                retry_on=(ConnectError,),
                logger=self._logger,
                description="create client",
            )
        except RetryError as exc:
            self._logger.error("runner %s gave up: %s", self.identity, exc)
            return False
        return True

    def _apply(self) -> None:
        self._logger.info("starting runner %s", self.identity)
        if not self._connect():
            return

        try:
            self.state = RunnerState.CREATING
            try:
                self._ensure_created()
            except ApiError as exc:
                self._logger.error("failed to create resource %s: %s", object_key(self.desired), exc)
                return
            self._loop()
        finally:
            self._delete()

    def _ensure_created(self) -> None:
        namespace = object_namespace(self.desired)
        if namespace:
            try:
                self._session.create_namespace(namespace)
            except AlreadyExistsError:
                pass

        try:
            response = self._session.create(copy.deepcopy(self.desired))
        except AlreadyExistsError:
            return
        self._logger.debug("create response for %s: %s", object_key(self.desired), response)

    def _loop(self) -> None:
        interval = self._config.interval_s
        next_tick = time.monotonic() + interval
        while True:
            self.state = RunnerState.IDLE
            # Event.wait(0) still reports a set flag, so stop wins over a due tick.
            if self._stop_event.wait(max(next_tick - time.monotonic(), 0.0)):
                self._logger.info("stop and delete %s", self.identity)
                return

            self.state = RunnerState.LOOPING
            now = time.monotonic()
            next_tick += interval
            if next_tick < now:
                next_tick = now + interval
            self._tick()

    def _tick(self) -> None:
        self.ticks += 1
        if self._config.update and object_name(self.desired):
            self._update()

        # Check-style objects (access reviews) cannot be updated, so every tick
        # also repeats the create.
        try:
            self._ensure_created()
        except ApiError as exc:
            self._logger.error("failed to create resource %s: %s", object_key(self.desired), exc)

    def _update(self) -> None:
        try:
            current = self._session.get(object_name(self.desired), object_namespace(self.desired))
        except ApiError as exc:
            self._logger.error("failed to get %s: %s", object_key(self.desired), exc)
            return

        baseline = copy.deepcopy(current)
        metadata = current.setdefault("metadata", {})
        labels = metadata.get("labels") or {}
        labels[UPDATE_LABEL] = f"world-{self._suffix}"
        metadata["labels"] = labels
        self._suffix += 1
        self.observed = current

        try:
            self._session.patch(current, baseline)
        except ApiError as exc:
            self._logger.error("failed to update %s: %s", object_key(self.desired), exc)

    def _delete(self) -> None:
        self.state = RunnerState.DELETING
        namespace = object_namespace(self.desired)
        if not namespace:
            return
        if self._session is None and not self._connect():
            return
        self.state = RunnerState.DELETING

        try:
            self._session.delete(copy.deepcopy(self.desired))
        except NotFoundError:
            pass
        except ApiError as exc:
            self._logger.error("failed to delete resource %s: %s", object_key(self.desired), exc)

        try:
            self._session.delete_namespace(namespace)
        except NotFoundError:
            pass
        except ApiError as exc:
            self._logger.error("failed to delete namespace %s: %s", namespace, exc)

        self._logger.info("deleted %s", self.identity)

    def _close_session(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        session.close()


__all__ = ["ConnectFn", "Runner", "RunnerConfig", "RunnerState", "UPDATE_LABEL"]

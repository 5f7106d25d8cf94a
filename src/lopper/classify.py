"""Cancellable classification of obsolete branches."""

import logging
import os
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from lopper.branches import (
    Branch,
    CancellableGateway,
    CancellationToken,
    ClassificationRequest,
    MergeRelation,
    list_candidates,
    load_branch,
)
from lopper.git import Cancelled, CommandGateway

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Whether a classification run is in flight."""

    IDLE = "idle"
    RUNNING = "running"


class Outcome(Enum):
    """How the last classification run ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Classifier:
    """Finds obsolete branches, one current run at a time.

    Starting a new run cancels the one in flight. Only the current run may
    replace the result set; results of superseded runs are dropped.
    """

    def __init__(
        self,
        gateway: CommandGateway,
        max_workers: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize classifier.

        Args:
            gateway: Runs git commands, shared by all runs
            max_workers: Worker pool size per run, defaults to the CPU count
            clock: Source of the current time for staleness checks
        """
        self.gateway = gateway
        self.max_workers = max_workers or os.cpu_count() or 1
        self.clock = clock
        self._lock = threading.Lock()
        self._dispatcher = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lopper-refresh")
        self._current: Optional[ClassificationRequest] = None
        self._branches: tuple[Branch, ...] = ()
        self._state = RunState.IDLE
        self._outcome: Optional[Outcome] = None
        self._last_error: Optional[BaseException] = None

    @property
    def branches(self) -> tuple[Branch, ...]:
        """Result set of the last completed run."""
        with self._lock:
            return self._branches

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def outcome(self) -> Optional[Outcome]:
        with self._lock:
            return self._outcome

    @property
    def last_error(self) -> Optional[BaseException]:
        with self._lock:
            return self._last_error

    def classify(self, request: ClassificationRequest) -> list[Branch]:
        """Enumerate candidate branches and load their metadata.

        Raises:
            Cancelled: If the request's token fires before the run finishes
            CommandFailed: If listing branches fails
        """
        token = request.token
        gateway = CancellableGateway(self.gateway, token)
        now = self.clock()
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="lopper-worker") as executor:
            try:
                names = list_candidates(gateway, request, executor)
                logger.debug("Loading metadata for %d branches", len(names))
                futures = [executor.submit(load_branch, gateway, name, request.max_age, now) for name in names]
                wait(futures)
                branches = [future.result() for future in futures]
            except Cancelled:
                executor.shutdown(wait=False, cancel_futures=True)
                raise
        # A token cancelled after the last command still discards the result
        token.raise_if_cancelled()
        return branches

    def refresh(
        self,
        reference_branch: str,
        remote: str,
        max_age: timedelta,
        relation: MergeRelation = MergeRelation.MERGED_ONLY,
        include_remotes: bool = False,
        pattern: Optional[str] = None,
    ) -> "Future[list[Branch]]":
        """Start a new run in the background, cancelling the current one.

        Returns:
            Future resolving to this run's branches, or raising ``Cancelled``
            or the error that ended it
        """
        request = self._build_request(reference_branch, remote, max_age, relation, include_remotes, pattern)
        with self._lock:
            return self._start(request)

    def cancel(self) -> None:
        """Cancel the run in flight, if any."""
        with self._lock:
            if self._current is not None:
                self._current.token.cancel()

    def toggle(
        self,
        reference_branch: str,
        remote: str,
        max_age: timedelta,
        relation: MergeRelation = MergeRelation.MERGED_ONLY,
        include_remotes: bool = False,
        pattern: Optional[str] = None,
    ) -> "Optional[Future[list[Branch]]]":
        """Cancel the run in flight, or start one when idle."""
        with self._lock:
            if self._state == RunState.RUNNING:
                if self._current is not None:
                    self._current.token.cancel()
                return None
            request = self._build_request(reference_branch, remote, max_age, relation, include_remotes, pattern)
            return self._start(request)

    def _build_request(
        self,
        reference_branch: str,
        remote: str,
        max_age: timedelta,
        relation: MergeRelation,
        include_remotes: bool,
        pattern: Optional[str],
    ) -> ClassificationRequest:
        return ClassificationRequest(
            reference_branch=reference_branch,
            remote=remote,
            max_age=max_age,
            relation=relation,
            include_remotes=include_remotes,
            pattern=re.compile(pattern) if pattern else None,
            token=CancellationToken(),
        )

    def _start(self, request: ClassificationRequest) -> "Future[list[Branch]]":
        # Caller holds the lock
        if self._current is not None:
            self._current.token.cancel()
        self._current = request
        self._state = RunState.RUNNING
        return self._dispatcher.submit(self._run, request)

    def close(self) -> None:
        """Cancel any run and stop the background thread."""
        self.cancel()
        self._dispatcher.shutdown(wait=True)

    def _run(self, request: ClassificationRequest) -> list[Branch]:
        try:
            branches = self.classify(request)
        except Cancelled:
            self._finish(request, Outcome.CANCELLED)
            raise
        except Exception as err:
            self._finish(request, Outcome.FAILED, error=err)
            raise
        self._finish(request, Outcome.COMPLETED, branches=branches)
        # Superseded or cancelled after the last command ran
        request.token.raise_if_cancelled()
        return branches

    def _finish(
        self,
        request: ClassificationRequest,
        outcome: Outcome,
        branches: Optional[list[Branch]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        with self._lock:
            if request is not self._current:
                logger.debug("Discarding result of superseded run (%s)", outcome.value)
                return
            if outcome == Outcome.COMPLETED and request.token.cancelled:
                outcome = Outcome.CANCELLED
            if outcome == Outcome.COMPLETED:
                self._branches = tuple(branches or ())
            self._outcome = outcome
            self._last_error = error
            self._current = None
            self._state = RunState.IDLE

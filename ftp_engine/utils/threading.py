"""Background task helpers for the FTP engine.

Provides the future-like SessionTask handed back to callers and the
SerialExecutor that runs tasks one at a time, in submission order, on
a single worker thread.
"""

import collections
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Generic, Iterator, List, Optional, TypeVar

from ftp_engine.ftp.exceptions import FTPCancelledError


T = TypeVar("T")

logger = logging.getLogger("ftp_engine.tasks")

# Marks the end of a task's progress stream
_END_OF_PROGRESS = object()


class TaskStatus(Enum):
    """Status of a background task."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskResult(Generic[T]):
    """Result of a background task."""
    status: TaskStatus
    result: Optional[T] = None
    error: Optional[Exception] = None


class SessionTask(Generic[T]):
    """
    A queued operation with progress reporting.

    Usage:
        task = session.download("/tmp/file", "/pub/file")

        for fraction in task.iter_progress():
            update_progress_bar(fraction)

        entries = session.ls("/pub").result(timeout=30)
    """

    def __init__(
        self,
        operation: str,
        target: Callable[["SessionTask[T]"], T],
        on_cancel: Optional[Callable[[], None]] = None
    ):
        """
        Initialize a task.

        Args:
            operation: Name of the operation (e.g. "upload")
            target: Callable run by the executor, receives the task
            on_cancel: Called when a running task is cancelled
        """
        self._operation = operation
        self._target = target
        self._on_cancel = on_cancel

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cancelled = threading.Event()
        self._progress_queue: queue.Queue = queue.Queue()
        self._progress: Optional[float] = None
        self._callbacks: List[Callable[["SessionTask[T]"], None]] = []
        self._result: Optional[TaskResult[T]] = None
        self._status = TaskStatus.PENDING

    def __repr__(self) -> str:
        return f"<SessionTask {self._operation} {self._status.value}>"

    @property
    def operation(self) -> str:
        """Name of the operation."""
        return self._operation

    @property
    def status(self) -> TaskStatus:
        """Current task status."""
        return self._status

    @property
    def is_done(self) -> bool:
        """True once the task completed, failed or was cancelled."""
        return self._done.is_set()

    @property
    def is_cancelled(self) -> bool:
        """True if task was cancelled."""
        return self._cancelled.is_set()

    @property
    def progress(self) -> Optional[float]:
        """Latest reported progress, or None if none was reported."""
        return self._progress

    def run(self) -> None:
        """Execute the target. Called by the executor's worker thread."""
        with self._lock:
            if self._done.is_set():
                return
            self._status = TaskStatus.RUNNING

        try:
            result = self._target(self)
            outcome = TaskResult(status=TaskStatus.COMPLETED, result=result)
        except FTPCancelledError as e:
            outcome = TaskResult(status=TaskStatus.CANCELLED, error=e)
        except Exception as e:
            outcome = TaskResult(status=TaskStatus.FAILED, error=e)

        self._finish(outcome)

    def cancel(self) -> bool:
        """
        Request cancellation of the task.

        A pending task is resolved as cancelled right away. A running
        task is asked to stop through its on_cancel hook and keeps the
        outcome of its target: CANCELLED only if the target raised
        FTPCancelledError, so a command the server already carried out
        still reports success.

        Returns:
            False if the task had already finished
        """
        with self._lock:
            if self._done.is_set():
                return False
            self._cancelled.set()
            pending = self._status == TaskStatus.PENDING

        if pending:
            self._finish(TaskResult(
                status=TaskStatus.CANCELLED,
                error=FTPCancelledError(self._operation.capitalize())
            ))
        elif self._on_cancel:
            self._on_cancel()
        return True

    def _finish(self, outcome: TaskResult[T]) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._result = outcome
            self._status = outcome.status
            self._done.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        self._progress_queue.put(_END_OF_PROGRESS)
        for callback in callbacks:
            self._invoke(callback)

    def _invoke(self, callback: Callable[["SessionTask[T]"], None]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception(f"Done-callback of {self._operation} raised")

    def add_done_callback(self, callback: Callable[["SessionTask[T]"], None]) -> None:
        """
        Call ``callback(task)`` when the task finishes.

        Runs immediately if the task is already done.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        self._invoke(callback)

    def report_progress(self, progress: float) -> None:
        """
        Report progress from within the task.

        Args:
            progress: Progress value between 0.0 and 1.0
        """
        progress = min(1.0, max(0.0, progress))
        self._progress = progress
        self._progress_queue.put(progress)

    def iter_progress(self, timeout: Optional[float] = None) -> Iterator[float]:
        """
        Iterate over progress updates until the task finishes.

        The stream is consumed as it is read; a second iteration only
        yields updates the first one did not take.

        Args:
            timeout: Maximum seconds to wait for each update

        Raises:
            TimeoutError: If no update arrives within timeout
        """
        while True:
            try:
                item = self._progress_queue.get(timeout=timeout)
            except queue.Empty:
                raise TimeoutError(f"No progress from {self._operation} within timeout")
            if item is _END_OF_PROGRESS:
                # Leave the marker for any later reader
                self._progress_queue.put(_END_OF_PROGRESS)
                return
            yield item

    def get_result(self, timeout: Optional[float] = None) -> TaskResult[T]:
        """
        Wait for task completion and return result.

        Args:
            timeout: Maximum time to wait (None = forever)

        Returns:
            TaskResult with status and result/error

        Raises:
            TimeoutError: If timeout expires before task completes
        """
        if not self._done.wait(timeout):
            raise TimeoutError("Task did not complete within timeout")
        return self._result

    def result(self, timeout: Optional[float] = None) -> T:
        """
        Wait for the task and return its value, raising its error.

        Raises:
            TimeoutError: If timeout expires before task completes
            FTPError: The error the operation failed with
        """
        outcome = self.get_result(timeout)
        if outcome.error is not None:
            raise outcome.error
        return outcome.result

    def exception(self, timeout: Optional[float] = None) -> Optional[Exception]:
        """Wait for the task and return its error, if any."""
        return self.get_result(timeout).error


class SerialExecutor:
    """Runs SessionTasks one at a time in FIFO order on a worker thread."""

    def __init__(self, name: str = "ftp-session"):
        """
        Initialize the executor. The worker starts with the first task.

        Args:
            name: Worker thread name
        """
        self._name = name
        self._queue: Deque[SessionTask] = collections.deque()
        self._condition = threading.Condition()
        self._current: Optional[SessionTask] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    @property
    def current(self) -> Optional[SessionTask]:
        """Task being executed right now."""
        return self._current

    @property
    def pending(self) -> List[SessionTask]:
        """Queued tasks, oldest first."""
        with self._condition:
            return list(self._queue)

    def submit(self, task: SessionTask[T]) -> SessionTask[T]:
        """
        Queue a task behind all previously submitted ones.

        Raises:
            RuntimeError: If the executor was shut down
        """
        with self._condition:
            if self._stopping:
                raise RuntimeError("Executor is shut down")
            self._queue.append(task)
            if self._thread is None:
                self._thread = threading.Thread(target=self._work, name=self._name, daemon=True)
                self._thread.start()
            self._condition.notify()
        return task

    def cancel_all(self) -> List[SessionTask]:
        """
        Cancel every queued task and the running one.

        Returns:
            The tasks that were cancelled
        """
        with self._condition:
            queued = list(self._queue)
            self._queue.clear()
            running = self._current

        cancelled = [task for task in queued if task.cancel()]
        if running is not None and running.cancel():
            cancelled.append(running)
        return cancelled

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop the worker after the queued tasks have run.

        Args:
            wait: Join the worker thread
            timeout: Maximum seconds to wait for the join
        """
        with self._condition:
            self._stopping = True
            self._condition.notify_all()
            thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _work(self) -> None:
        """Worker loop."""
        while True:
            with self._condition:
                while not self._queue and not self._stopping:
                    self._condition.wait()
                if not self._queue:
                    self._thread = None
                    return
                task = self._queue.popleft()
                self._current = task
            try:
                task.run()
            finally:
                with self._condition:
                    self._current = None

"""
=============================================================================
COMPUTATION QUEUE
=============================================================================

A FIFO of pending calculations served by exactly one worker thread.

=============================================================================
WHY A SINGLE CONSUMER?
=============================================================================

Sessions run on their own threads, but every expression is evaluated on
ONE dedicated worker. That gives a total order over all calculations in
the server:

    Session A ──┐                                   ┌──► A's reply channel
                │  submit()   ┌───────────────┐     │
    Session B ──┼───────────► │ T1 T2 T3 T4 … │ ──► Worker ──► B's reply channel
                │             └───────────────┘     │
    Session C ──┘               FIFO (bounded)      └──► C's reply channel

    If T1 was submitted before T2 (from any sessions), T1 is evaluated
    before T2. Per session this means replies come back in request order.

=============================================================================
TASKS ARE VALUES, NOT CLOSURES
=============================================================================

An EvaluationTask is plain data: the expression text and where to send
the answer. The worker does not run arbitrary callables, it runs the
evaluator on the text and hands the reply line to task.reply_to.

=============================================================================
BLOCKING, NOT SPINNING
=============================================================================

The worker waits in queue.get() while the queue is empty. It does not
poll, so an idle server uses no CPU.

=============================================================================
LIMITS AND SHUTDOWN
=============================================================================

    Overflow (queue full):
        "reject"  submit() returns False immediately
        "block"   submit() waits for space (optionally with a timeout)

    Shutdown:
        "drain"   the worker finishes everything already queued
        "discard" queued tasks are answered "Error: Server shutting down"

Either way, every accepted task gets exactly one reply while the process
is alive: computed, or an explicit shutdown error.

=============================================================================
"""

import threading
import queue
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from ..errors import EvaluationError, QueueClosedError
from ..evaluator import evaluate
from ..protocol import replies


logger = logging.getLogger(__name__)


class ReplySink(Protocol):
    """Anything the worker can hand a finished reply line to."""

    def deliver(self, text: str) -> bool:
        ...


class WorkerState(Enum):
    """Worker thread states."""
    IDLE = "idle"        # Waiting for a task
    BUSY = "busy"        # Evaluating
    STOPPED = "stopped"  # Thread exited


@dataclass
class EvaluationTask:
    """
    One pending calculation.

    Attributes:
        expression: Text after "CALC:".
        reply_to: Where the reply line goes (a reserved slot in the session's
            reply channel).
        session_id: Owning connection id, for logging.
        submitted_at: Time the task was queued.
    """
    expression: str
    reply_to: ReplySink
    session_id: str = "-"
    submitted_at: float = field(default_factory=time.time)


class EvaluationWorker(threading.Thread):
    """
    The single consumer of the computation queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Worker Loop                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. task = queue.get()        blocks while the queue is empty      │
    │   2. None?  → poison pill, exit                                      │
    │   3. reply = "Result: ..." or "Error: ..."                          │
    │   4. task.reply_to.deliver(reply)                                   │
    │   5. queue.task_done()                                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        evaluator: Callable[[str], str] = evaluate,
    ):
        """
        Args:
            task_queue: Queue to pull tasks from.
            evaluator: Expression → formatted result. Injectable for tests.
        """
        # daemon=True: a stuck evaluation never keeps the process alive
        super().__init__(name="EvaluationWorker", daemon=True)

        self.task_queue = task_queue
        self.evaluator = evaluator
        self.state = WorkerState.IDLE

        # Metrics
        self.tasks_completed = 0
        self.tasks_failed = 0
        self.replies_dropped = 0

    def run(self):
        logger.debug("Evaluation worker started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute_task(task)
            except Exception as e:
                # Never let one task take the worker down
                logger.exception(f"Evaluation worker error: {e}")
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug("Evaluation worker stopped")

    def _execute_task(self, task: EvaluationTask):
        """Evaluate one task and deliver its reply."""
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            reply = self._compute(task.expression)

            if not task.reply_to.deliver(reply):
                self.replies_dropped += 1
                logger.debug(f"[{task.session_id}] Session gone, dropped reply {reply!r}")

            elapsed = time.time() - start_time
            waited = start_time - task.submitted_at
            logger.debug(
                f"[{task.session_id}] {task.expression!r} -> {reply!r} "
                f"(queued {waited:.3f}s, evaluated {elapsed:.3f}s)"
            )
        finally:
            self.state = WorkerState.IDLE

    def _compute(self, expression: str) -> str:
        """
        Evaluate an expression and build the reply line.

        Never raises: evaluation errors become "Error: <reason>", anything
        unexpected is logged and reported as an invalid expression.
        """
        try:
            reply = replies.result(self.evaluator(expression))
        except EvaluationError as e:
            self.tasks_failed += 1
            return replies.error_from(e)
        except Exception as e:
            self.tasks_failed += 1
            logger.exception(f"Unexpected evaluator failure for {expression!r}: {e}")
            return replies.error("Invalid expression")

        self.tasks_completed += 1
        return reply


class ComputationQueue:
    """
    Bounded FIFO of EvaluationTask with one dedicated worker.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    ComputationQueue Usage                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   cq = ComputationQueue(capacity=1024, overflow_policy="reject")    │
    │   cq.start()                                                         │
    │                                                                      │
    │   accepted = cq.submit(EvaluationTask("3+4*2", reply_to=slot))      │
    │   if not accepted:                                                   │
    │       slot.deliver("Error: Server busy")                            │
    │                                                                      │
    │   cq.shutdown(policy="drain", timeout=10.0)                         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        capacity: int = 0,
        overflow_policy: str = "reject",
        submit_timeout: Optional[float] = None,
        evaluator: Callable[[str], str] = evaluate,
    ):
        """
        Args:
            capacity: Maximum queued tasks. 0 = unbounded.
            overflow_policy: "reject" or "block" when the queue is full.
            submit_timeout: Upper bound for a blocking submit.
            evaluator: Passed through to the worker.
        """
        self.capacity = capacity
        self.overflow_policy = overflow_policy
        self.submit_timeout = submit_timeout

        # queue.Queue does its own locking; maxsize=0 means unbounded
        self._task_queue: queue.Queue[Optional[EvaluationTask]] = queue.Queue(maxsize=capacity)
        self._worker = EvaluationWorker(self._task_queue, evaluator=evaluator)

        # Serializes submit() against shutdown() so no task can slip in
        # behind the poison pill
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

        self.tasks_rejected = 0
        self.tasks_discarded = 0

    def start(self):
        """Start the worker thread."""
        if self._started:
            return
        logger.info(
            f"Starting computation queue (capacity={self.capacity or 'unbounded'}, "
            f"overflow={self.overflow_policy})"
        )
        self._worker.start()
        self._started = True

    @property
    def is_closed(self) -> bool:
        return self._closed

    def submit(self, task: EvaluationTask) -> bool:
        """
        Queue a task for evaluation.

        Returns:
            True if the task was queued (it will get exactly one reply),
            False if the queue was full and the task was not queued.

        Raises:
            QueueClosedError: The queue is shutting down.
        """
        block = self.overflow_policy == "block"

        with self._lock:
            if self._closed:
                raise QueueClosedError()
            try:
                self._task_queue.put(task, block=block, timeout=self.submit_timeout if block else None)
            except queue.Full:
                self.tasks_rejected += 1
                logger.warning(f"[{task.session_id}] Computation queue full, rejecting task")
                return False
        return True

    def shutdown(self, policy: str = "drain", timeout: Optional[float] = 10.0):
        """
        Stop the worker.

        ┌─────────────────────────────────────────────────────────────────┐
        │                    shutdown() Flow                               │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   1. Mark closed (submit() now raises QueueClosedError)         │
        │   2. discard: answer every queued task with a shutdown error    │
        │   3. Queue the poison pill behind whatever is left              │
        │   4. Wait for the worker (bounded by timeout)                   │
        │   5. Anything still queued after the timeout is discarded       │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Args:
            policy: "drain" or "discard".
            timeout: Maximum seconds to wait for the worker.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if not self._started:
            return

        logger.info(f"Shutting down computation queue ({policy}, {self._task_queue.qsize()} queued)")
        deadline = time.time() + timeout if timeout else None

        if policy == "discard":
            self._discard_pending()

        try:
            self._task_queue.put(None, timeout=self._remaining(deadline))
        except queue.Full:
            logger.warning("Drain timeout while queueing stop signal")

        self._worker.join(self._remaining(deadline))

        if self._worker.is_alive():
            logger.warning("Drain timeout, discarding remaining tasks")
            self._discard_pending()
            # The pill may have been swept up with the tasks
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                pass

        logger.info("Computation queue shutdown complete")

    def _discard_pending(self):
        """Answer every queued task with a shutdown error."""
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                return
            try:
                if task is not None:
                    self.tasks_discarded += 1
                    task.reply_to.deliver(replies.SERVER_SHUTTING_DOWN)
            finally:
                self._task_queue.task_done()

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - time.time(), 0.0)

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def pending(self) -> int:
        """Tasks waiting for the worker."""
        return self._task_queue.qsize()

    @property
    def worker_state(self) -> WorkerState:
        return self._worker.state

    def join(self):
        """Block until every queued task has been processed."""
        self._task_queue.join()

    @property
    def stats(self) -> dict:
        """Task counters for monitoring and the admin console."""
        return {
            "queued": self._task_queue.qsize(),
            "completed": self._worker.tasks_completed,
            "failed": self._worker.tasks_failed,
            "rejected": self.tasks_rejected,
            "discarded": self.tasks_discarded,
            "dropped": self._worker.replies_dropped,
        }

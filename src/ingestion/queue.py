"""
Ingestion Queue - Background Enrichment Tasks.

Runs the enrichment of recorded episodes as asyncio tasks and keeps an
observable record of each one, keyed by episode id. Tasks of the same tenant
run one at a time within this process.
"""

import asyncio
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from src.ingestion.pipeline import IngestionError, IngestionPipeline, IngestionReport
from src.knowledge.schemas import Episode, IngestionStage, utc_now
from src.utils.logger import get_logger

logger = get_logger(__name__)


class TaskState(str, Enum):
    """Lifecycle of a background enrichment task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskStatus(BaseModel):
    """Serializable view of an ingestion task."""

    episode_id: str
    group_id: str
    state: TaskState
    stage: IngestionStage
    error: str | None = None
    report: IngestionReport | None = None
    submitted_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass
class IngestionTask:
    """Background enrichment of one episode."""

    episode_id: str
    group_id: str
    state: TaskState = TaskState.PENDING
    stage: IngestionStage = IngestionStage.PERSISTED
    error: str | None = None
    report: IngestionReport | None = None
    submitted_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    handle: asyncio.Task | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        """Whether the task reached a final state."""
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED)

    async def wait(self) -> "IngestionTask":
        """Wait until the task finishes, whatever the outcome."""
        if self.handle is not None:
            await asyncio.wait([self.handle])
        return self

    def status(self) -> TaskStatus:
        """Snapshot of the task."""
        return TaskStatus(
            episode_id=self.episode_id,
            group_id=self.group_id,
            state=self.state,
            stage=self.stage,
            error=self.error,
            report=self.report,
            submitted_at=self.submitted_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class IngestionQueue:
    """
    Registry of background enrichment tasks.

    Failures are logged and recorded on the task, never raised to the
    submitter. Same-tenant tasks are serialized by a per-tenant lock, so two
    in-process ingestions cannot both create a node for the same new name.
    Processes sharing one database are not coordinated. Only the latest
    `retention` finished tasks are kept; a tenant's lock is dropped once no
    task of that tenant is left to run.

    Usage:
        queue = IngestionQueue(pipeline)
        task = queue.submit(episode)
        await task.wait()
        print(task.state, task.error)
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        timeout: float | None = None,
        retention: int = 1000,
    ) -> None:
        """
        Initialize the queue.

        Args:
            pipeline: Pipeline running the enrichment
            timeout: Default bound on one enrichment in seconds; None for no bound
            retention: Number of finished tasks kept for status lookups
        """
        if retention < 1:
            raise ValueError(f"retention must be at least 1, got {retention}")

        self.pipeline = pipeline
        self.timeout = timeout
        self.retention = retention
        self._tasks: dict[str, IngestionTask] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._unfinished: Counter[str] = Counter()

    def submit(self, episode: Episode, timeout: float | None = None) -> IngestionTask:
        """
        Schedule the enrichment of a recorded episode.

        Args:
            episode: Episode returned by IngestionPipeline.record()
            timeout: Bound on this enrichment (default: queue timeout)

        Returns:
            The task now registered under the episode id
        """
        task = IngestionTask(episode_id=episode.id, group_id=episode.group_id)
        bound = self.timeout if timeout is None else timeout

        task.handle = asyncio.create_task(
            self._run(task, episode, bound), name=f"ingest-{episode.id}"
        )
        task.handle.add_done_callback(lambda handle: self._settle(task, handle))
        self._unfinished[episode.group_id] += 1
        # Re-submitting an episode moves it to the end
        self._tasks.pop(episode.id, None)
        self._tasks[episode.id] = task

        logger.debug(f"Queued enrichment of episode {episode.id}")
        return task

    def get(self, episode_id: str) -> IngestionTask | None:
        """Latest task registered for an episode."""
        return self._tasks.get(episode_id)

    def tasks(self) -> list[IngestionTask]:
        """All registered tasks in submission order."""
        return list(self._tasks.values())

    def cancel(self, episode_id: str) -> bool:
        """
        Cancel an unfinished task.

        Returns:
            True if a cancellation was requested
        """
        task = self._tasks.get(episode_id)
        if task is None or task.done or task.handle is None:
            return False
        return task.handle.cancel()

    async def drain(self) -> None:
        """Wait for every registered task to finish."""
        handles = [t.handle for t in self._tasks.values() if t.handle is not None]
        if handles:
            await asyncio.wait(handles)

    async def shutdown(self, cancel: bool = False) -> None:
        """
        Stop the queue.

        Args:
            cancel: Cancel unfinished tasks instead of waiting for them
        """
        if cancel:
            for task in self._tasks.values():
                if not task.done and task.handle is not None:
                    task.handle.cancel()

        await self.drain()
        logger.info(f"Ingestion queue stopped ({len(self._tasks)} tasks)")

    def _settle(self, task: IngestionTask, handle: asyncio.Task) -> None:
        # A task cancelled before its first step never enters _run
        if handle.cancelled() and not task.done:
            task.state = TaskState.CANCELLED
            task.finished_at = utc_now()

        self._unfinished[task.group_id] -= 1
        if self._unfinished[task.group_id] <= 0:
            del self._unfinished[task.group_id]
            self._locks.pop(task.group_id, None)

        self._prune()

    def _prune(self) -> None:
        """Forget the oldest finished tasks beyond the retention count."""
        excess = len(self._tasks) - self.retention
        if excess <= 0:
            return

        expired = [episode_id for episode_id, t in self._tasks.items() if t.done][:excess]
        for episode_id in expired:
            del self._tasks[episode_id]
        if expired:
            logger.debug(f"Pruned {len(expired)} finished ingestion tasks")

    async def _run(self, task: IngestionTask, episode: Episode, timeout: float | None) -> None:
        def on_stage(stage: IngestionStage) -> None:
            task.stage = stage

        try:
            async with self._locks[episode.group_id]:
                task.state = TaskState.RUNNING
                task.started_at = utc_now()
                task.report = await asyncio.wait_for(
                    self.pipeline.process(episode, on_stage=on_stage), timeout=timeout
                )
            task.state = TaskState.SUCCEEDED

        except asyncio.CancelledError:
            task.state = TaskState.CANCELLED
            logger.warning(f"Enrichment of episode {episode.id} cancelled at {task.stage.value}")
            raise

        except TimeoutError:
            task.error = f"Enrichment timed out after {timeout}s while {task.stage.value}"
            task.state = TaskState.FAILED
            task.stage = IngestionStage.FAILED
            logger.error(task.error)

        except IngestionError as e:
            task.error = str(e)
            task.state = TaskState.FAILED
            task.stage = IngestionStage.FAILED
            logger.exception(f"Enrichment of episode {episode.id} failed")

        except Exception as e:
            task.error = f"Unexpected error: {e}"
            task.state = TaskState.FAILED
            task.stage = IngestionStage.FAILED
            logger.exception(f"Enrichment of episode {episode.id} failed unexpectedly")

        finally:
            task.finished_at = utc_now()

"""Four-stage progress tracking for submissions.

Stages move forward when the pipeline reports milestones. The fixed timed
script survives as an opt-in replay (``PROGRESS_MODE=simulated``) that runs
next to the pipeline without looking at it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from configs.config import Config

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETE = "complete"


class Milestone(str, Enum):
    """Points in the pipeline that move the board forward."""

    PROBLEM_CREATED = "problem_created"
    UPSTREAM_CALLED = "upstream_called"
    SOLUTIONS_GENERATED = "solutions_generated"
    SOLUTIONS_PERSISTED = "solutions_persisted"
    COMPLETED = "completed"
    FAILED = "failed"


STAGES: tuple[tuple[str, str, str], ...] = (
    ("retrieval", "Retrieval Agents", "Scanning literature, patents, and recent developments"),
    ("generation", "Idea Generation", "Generating innovative solution concepts"),
    ("evaluation", "Evaluation Agents", "Scoring solutions on feasibility, cost, and sustainability"),
    ("synthesis", "Solution Synthesis", "Ranking and preparing final recommendations"),
)

# (stage, status, progress, details, delay in ms before the next step)
SCRIPT: tuple[tuple[str, StageStatus, int, tuple[str, ...], int], ...] = (
    ("retrieval", StageStatus.ACTIVE, 0, ("Initializing search parameters...",), 500),
    ("retrieval", StageStatus.ACTIVE, 25, ("Scanning scientific literature...",), 800),
    ("retrieval", StageStatus.ACTIVE, 50, ("Analyzing patent databases...",), 600),
    ("retrieval", StageStatus.ACTIVE, 75, ("Processing recent news and developments...",), 700),
    ("retrieval", StageStatus.COMPLETE, 100, ("Found 247 relevant sources", "Extracted 156 key insights"), 0),
    ("generation", StageStatus.ACTIVE, 0, ("Synthesizing retrieved knowledge...",), 600),
    ("generation", StageStatus.ACTIVE, 30, ("Generating solution concepts...",), 900),
    ("generation", StageStatus.ACTIVE, 70, ("Refining and diversifying ideas...",), 800),
    ("generation", StageStatus.COMPLETE, 100, ("Generated 23 unique solutions", "Categorized by approach type"), 0),
    ("evaluation", StageStatus.ACTIVE, 0, ("Initializing scoring rubrics...",), 400),
    ("evaluation", StageStatus.ACTIVE, 25, ("Assessing technical feasibility...",), 700),
    ("evaluation", StageStatus.ACTIVE, 50, ("Calculating cost implications...",), 600),
    ("evaluation", StageStatus.ACTIVE, 75, ("Evaluating sustainability impact...",), 800),
    ("evaluation", StageStatus.COMPLETE, 100, ("Scored all solutions", "Applied weighted criteria"), 0),
    ("synthesis", StageStatus.ACTIVE, 0, ("Ranking solutions by overall score...",), 500),
    ("synthesis", StageStatus.ACTIVE, 40, ("Preparing detailed analysis...",), 600),
    ("synthesis", StageStatus.ACTIVE, 80, ("Generating implementation roadmaps...",), 700),
    ("synthesis", StageStatus.COMPLETE, 100, ("Top 3 solutions identified", "Analysis complete"), 0),
)

SCRIPT_DURATION_MS = sum(step[4] for step in SCRIPT)

# Each milestone is a set of stage updates applied in order.
MILESTONE_UPDATES: dict[Milestone, tuple[tuple[str, StageStatus, int, tuple[str, ...]], ...]] = {
    Milestone.PROBLEM_CREATED: (
        ("retrieval", StageStatus.COMPLETE, 100, ("Problem statement recorded",)),
        ("generation", StageStatus.ACTIVE, 0, ("Synthesizing retrieved knowledge...",)),
    ),
    Milestone.UPSTREAM_CALLED: (
        ("generation", StageStatus.ACTIVE, 30, ("Generating solution concepts...",)),
    ),
    Milestone.SOLUTIONS_GENERATED: (
        ("generation", StageStatus.COMPLETE, 100, ("Generated 3 solutions", "Categorized by approach type")),
        ("evaluation", StageStatus.ACTIVE, 50, ("Scoring solutions...",)),
    ),
    Milestone.SOLUTIONS_PERSISTED: (
        ("evaluation", StageStatus.COMPLETE, 100, ("Scored all solutions", "Saved results")),
        ("synthesis", StageStatus.ACTIVE, 40, ("Preparing detailed analysis...",)),
    ),
    Milestone.COMPLETED: (
        ("synthesis", StageStatus.COMPLETE, 100, ("Top 3 solutions identified", "Analysis complete")),
    ),
}

_STATUS_RANK = {StageStatus.WAITING: 0, StageStatus.ACTIVE: 1, StageStatus.COMPLETE: 2}


@dataclass
class Stage:
    id: str
    name: str
    description: str
    status: StageStatus = StageStatus.WAITING
    progress: int = 0
    details: list[str] = field(default_factory=list)

    def advance(self, status: StageStatus, progress: int, details: tuple[str, ...]) -> bool:
        """Apply an update unless it would move the stage backwards."""
        if (_STATUS_RANK[status], progress) < (_STATUS_RANK[self.status], self.progress):
            return False
        self.status = status
        self.progress = max(0, min(100, progress))
        self.details = list(details)
        return True


@dataclass
class Board:
    """Progress of one submission."""

    problem_id: str
    stages: list[Stage]
    finished: bool = False
    cancelled: bool = False
    error: str | None = None
    milestones: list[str] = field(default_factory=list)

    def stage(self, stage_id: str) -> Stage:
        return next(s for s in self.stages if s.id == stage_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "finished": self.finished,
            "cancelled": self.cancelled,
            "error": self.error,
            "milestones": list(self.milestones),
            "stages": [
                {
                    "id": s.id,
                    "name": s.name,
                    "description": s.description,
                    "status": s.status.value,
                    "progress": s.progress,
                    "details": list(s.details),
                }
                for s in self.stages
            ],
        }


def new_board(problem_id: str) -> Board:
    return Board(
        problem_id=problem_id,
        stages=[Stage(id=sid, name=name, description=desc) for sid, name, desc in STAGES],
    )


class ProgressBoard:
    """Registry of per-submission boards with async waiting.

    Create one per running application; the lock and condition belong to
    the event loop that first uses them.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_boards: int | None = None,
    ) -> None:
        self._boards: dict[str, Board] = {}
        self.max_boards = max_boards or Config.RESULT_CACHE_SIZE
        self._lock = asyncio.Lock()
        self._condition = asyncio.Condition(self._lock)
        self._sleep = sleep
        self._replays: dict[str, asyncio.Task] = {}

    async def open(self, problem_id: str) -> Board:
        async with self._condition:
            board = new_board(problem_id)
            self._boards.pop(problem_id, None)
            self._boards[problem_id] = board
            self._evict_settled()
            self._condition.notify_all()
            return board

    async def snapshot(self, problem_id: str) -> dict[str, Any] | None:
        async with self._lock:
            board = self._boards.get(problem_id)
            return board.to_dict() if board else None

    async def record(self, problem_id: str, milestone: Milestone, error: str | None = None) -> bool:
        """Apply a milestone. Returns False when the board is gone, finished or cancelled."""
        async with self._condition:
            board = self._boards.get(problem_id)
            if board is None or board.cancelled or board.finished:
                return False

            board.milestones.append(milestone.value)
            if milestone is Milestone.FAILED:
                board.error = error or "Submission failed"
                board.finished = True
            else:
                for stage_id, status, progress, details in MILESTONE_UPDATES[milestone]:
                    board.stage(stage_id).advance(status, progress, details)
                if milestone is Milestone.COMPLETED:
                    board.finished = True
            self._condition.notify_all()
            logger.debug("Board %s reached %s", problem_id, milestone.value)
            return True

    async def wait(self, problem_id: str, timeout: float = 30.0) -> dict[str, Any] | None:
        """Wait until the board finishes or is cancelled, or the timeout passes."""
        try:
            async with asyncio.timeout(timeout):
                async with self._condition:
                    await self._condition.wait_for(
                        lambda: self._is_settled(problem_id),
                    )
                    board = self._boards.get(problem_id)
                    return board.to_dict() if board else None
        except TimeoutError:
            return await self.snapshot(problem_id)

    def _evict_settled(self) -> None:
        """Drop the oldest finished or cancelled boards once over capacity; running ones stay."""
        excess = len(self._boards) - self.max_boards
        if excess <= 0:
            return
        stale = [pid for pid, b in self._boards.items() if b.finished or b.cancelled][:excess]
        for problem_id in stale:
            del self._boards[problem_id]
        if stale:
            logger.debug("Evicted %d settled boards", len(stale))

    def _is_settled(self, problem_id: str) -> bool:
        board = self._boards.get(problem_id)
        return board is None or board.finished or board.cancelled

    async def cancel(self, problem_id: str) -> bool:
        """Detach observers from a submission; the pipeline itself keeps running."""
        replay = self._replays.pop(problem_id, None)
        if replay is not None:
            replay.cancel()
        async with self._condition:
            board = self._boards.get(problem_id)
            if board is None:
                return False
            board.cancelled = True
            self._condition.notify_all()
            return True

    async def discard(self, problem_id: str) -> None:
        async with self._condition:
            self._boards.pop(problem_id, None)
            self._condition.notify_all()

    def start_replay(self, problem_id: str) -> asyncio.Task:
        """Play the fixed timed script for a board, independently of the pipeline."""
        task = asyncio.create_task(self._replay(problem_id))
        self._replays[problem_id] = task
        task.add_done_callback(lambda _t: self._replays.pop(problem_id, None))
        return task

    async def _replay(self, problem_id: str) -> None:
        for stage_id, status, progress, details, delay_ms in SCRIPT:
            async with self._condition:
                board = self._boards.get(problem_id)
                if board is None or board.cancelled:
                    return
                board.stage(stage_id).advance(status, progress, details)
                self._condition.notify_all()
            if delay_ms:
                await self._sleep(delay_ms / 1000)
        async with self._condition:
            board = self._boards.get(problem_id)
            if board is not None and not board.cancelled:
                board.finished = True
                self._condition.notify_all()

    async def aclose(self) -> None:
        for task in list(self._replays.values()):
            task.cancel()
        self._replays.clear()

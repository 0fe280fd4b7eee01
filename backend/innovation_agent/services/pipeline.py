"""Submission pipeline: problem -> generation -> persistence, as a Prefect workflow."""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from configs.config import Config
from prefect import flow, get_run_logger, task
from prefect.cache_policies import NONE

from innovation_agent.schemas import (
    SOLUTIONS_PER_PROBLEM,
    GenerationResult,
    Problem,
    ProblemStatus,
    Solution,
    SubmissionOutcome,
)
from innovation_agent.services.llm_service import LLMService
from innovation_agent.services.mlflow_logger import MLFlowLogger
from innovation_agent.services.persistence import (
    NotAuthenticatedError,
    PersistenceError,
    Principal,
    ProblemStore,
)
from innovation_agent.services.progress import Milestone, ProgressBoard

logger = logging.getLogger(__name__)

Reporter = Callable[..., Awaitable[Any]]

SAVE_FAILED = "Failed to save problem"
GENERATION_FAILED = "Failed to generate solutions. Please try again."


async def _ignore(*_args: Any, **_kwargs: Any) -> None:
    return None


@task(name="mark_problem_status", cache_policy=NONE)
async def mark_problem_status(
    store: ProblemStore,
    principal: Principal,
    problem_id: str,
    status: ProblemStatus,
) -> Problem:
    """Move a problem to a new lifecycle status."""
    run_logger = get_run_logger()
    problem = await store.update_problem_status(principal, problem_id, status)
    run_logger.info("Problem %s is now %s", problem_id, status.value)
    return problem


@task(name="generate_solutions", cache_policy=NONE)
async def generate_solutions(llm_service: LLMService, description: str) -> GenerationResult:
    """Ask the solution generator for three proposals."""
    run_logger = get_run_logger()
    result = await llm_service.generate_solutions(description)
    if result.is_fallback:
        run_logger.warning(
            "Serving fallback solutions (%s)",
            result.fallback_reason.value if result.fallback_reason else "unknown",
        )
    return result


@task(name="persist_solutions", cache_policy=NONE)
async def persist_solutions(
    store: ProblemStore,
    principal: Principal,
    problem_id: str,
    result: GenerationResult,
) -> list[Solution]:
    """Write the batch of solutions for a problem.

    Raises:
        PersistenceError: If the store does not return exactly three rows.

    """
    run_logger = get_run_logger()
    saved = await store.create_solutions(principal, problem_id, result.solutions)
    if len(saved) != SOLUTIONS_PER_PROBLEM:
        msg = f"Expected {SOLUTIONS_PER_PROBLEM} saved solutions, store returned {len(saved)}"
        raise PersistenceError(msg)
    run_logger.info("Saved %d solutions for problem %s", len(saved), problem_id)
    return saved


@flow(name="solve_problem_workflow", validate_parameters=False)
async def solve_problem_workflow(
    problem: Problem,
    principal: Principal,
    store: ProblemStore,
    llm_service: LLMService,
    report: Reporter = _ignore,
) -> SubmissionOutcome:
    """Run steps 2-6 of a submission for an already created problem.

    Any failure moves the problem to ``failed`` and is returned as an
    unsuccessful outcome instead of being raised. The final milestone is
    left to the caller.

    Args:
        problem: The pending problem created for this submission
        principal: User the store calls act for
        store: Problem and solution store
        llm_service: Solution generator
        report: Async callback receiving progress milestones

    Returns:
        The submission outcome

    """
    run_logger = get_run_logger()
    reached = ProblemStatus.PENDING
    try:
        current = await mark_problem_status(store, principal, problem.id, ProblemStatus.PROCESSING)
        reached = current.status

        await report(Milestone.UPSTREAM_CALLED)
        result = await generate_solutions(llm_service, problem.description)
        await report(Milestone.SOLUTIONS_GENERATED)

        saved = await persist_solutions(store, principal, problem.id, result)
        await report(Milestone.SOLUTIONS_PERSISTED)

        current = await mark_problem_status(store, principal, problem.id, ProblemStatus.COMPLETED)

    except Exception as e:
        run_logger.exception("Submission %s failed after reaching %s", problem.id, reached.value)
        # Compensate: a failed problem keeps no solutions.
        try:
            if reached is ProblemStatus.PROCESSING:
                await store.delete_solutions(principal, problem.id)
            current = await store.update_problem_status(principal, problem.id, ProblemStatus.FAILED)
        except Exception:
            logger.exception("Could not mark problem %s as failed", problem.id)
            current = problem.model_copy(update={"status": reached})

        message = "User not authenticated" if isinstance(e, NotAuthenticatedError) else GENERATION_FAILED
        return SubmissionOutcome(success=False, problem=current, error=message)

    return SubmissionOutcome(
        success=True,
        problem=current,
        solutions=saved,
        literature_review=result.literature_review,
        source=result.source,
        note=result.note,
        fallback_reason=result.fallback_reason,
    )


class SubmissionPipeline:
    """Orchestrates one submission per call: create, generate, persist, complete."""

    def __init__(
        self,
        store: ProblemStore,
        llm_service: LLMService,
        progress: ProgressBoard | None = None,
        progress_mode: str | None = None,
        max_outcomes: int | None = None,
    ) -> None:
        self.store = store
        self.llm_service = llm_service
        self.progress = progress
        self.progress_mode = progress_mode or Config.PROGRESS_MODE
        self.mlflow_logger = MLFlowLogger()
        self.max_outcomes = max_outcomes or Config.RESULT_CACHE_SIZE
        self._outcomes: OrderedDict[str, SubmissionOutcome] = OrderedDict()
        self._tasks: set[asyncio.Task] = set()

    def _reporter(self, problem_id: str) -> Reporter:
        if self.progress is None or self.progress_mode == "simulated":
            return _ignore

        async def report(milestone: Milestone, error: str | None = None) -> None:
            await self.progress.record(problem_id, milestone, error=error)

        return report

    async def create(
        self,
        principal: Principal | None,
        description: str,
        title: str | None = None,
        category: str | None = None,
    ) -> Problem:
        """Step 1: store the problem as pending and open its progress board.

        Raises:
            ValueError: If the description is blank
            NotAuthenticatedError: If there is no usable principal
            PersistenceError: If the store rejects the insert

        """
        description = (description or "").strip()
        if not description:
            raise ValueError("Problem description is required")

        problem = await self.store.create_problem(principal, description, title, category)
        logger.info("Created problem %s", problem.id)

        if self.progress is not None:
            await self.progress.open(problem.id)
            if self.progress_mode == "simulated":
                self.progress.start_replay(problem.id)
            else:
                await self.progress.record(problem.id, Milestone.PROBLEM_CREATED)
        return problem

    async def run(self, principal: Principal, problem: Problem) -> SubmissionOutcome:
        """Steps 2-6 for a created problem."""
        report = self._reporter(problem.id)
        outcome = await solve_problem_workflow(
            problem=problem,
            principal=principal,
            store=self.store,
            llm_service=self.llm_service,
            report=report,
        )
        self._remember(problem.id, outcome)
        if outcome.success:
            await report(Milestone.COMPLETED)
        else:
            await report(Milestone.FAILED, error=outcome.error)
        await self.mlflow_logger.alog_submission(problem.id, outcome.model_dump(mode="json"))
        return outcome

    async def submit(
        self,
        principal: Principal | None,
        description: str,
        title: str | None = None,
        category: str | None = None,
    ) -> SubmissionOutcome:
        """Run a whole submission and report how it went.

        Raises:
            ValueError: If the description is blank; nothing is stored or sent

        """
        try:
            problem = await self.create(principal, description, title, category)
        except ValueError:
            raise
        except NotAuthenticatedError as e:
            logger.warning("Rejected unauthenticated submission")
            return SubmissionOutcome(success=False, error=str(e))
        except PersistenceError:
            logger.exception("Error creating problem")
            return SubmissionOutcome(success=False, error=SAVE_FAILED)

        return await self.run(principal, problem)

    async def start(
        self,
        principal: Principal | None,
        description: str,
        title: str | None = None,
        category: str | None = None,
    ) -> Problem:
        """Create the problem now and finish the submission in the background."""
        problem = await self.create(principal, description, title, category)
        job = asyncio.create_task(self._run_safely(principal, problem))
        self._tasks.add(job)
        job.add_done_callback(self._tasks.discard)
        return problem

    async def _run_safely(self, principal: Principal, problem: Problem) -> None:
        try:
            await self.run(principal, problem)
        except Exception:
            logger.exception("Background submission %s crashed", problem.id)
            if self.progress is not None:
                await self.progress.record(problem.id, Milestone.FAILED, error=GENERATION_FAILED)

    def outcome(self, problem_id: str) -> SubmissionOutcome | None:
        """The in-memory outcome of a finished run, including its literature review."""
        return self._outcomes.get(problem_id)

    def _remember(self, problem_id: str, outcome: SubmissionOutcome) -> None:
        self._outcomes[problem_id] = outcome
        self._outcomes.move_to_end(problem_id)
        while len(self._outcomes) > self.max_outcomes:
            self._outcomes.popitem(last=False)

    def discard_outcome(self, problem_id: str) -> None:
        self._outcomes.pop(problem_id, None)

    async def drain(self) -> None:
        """Wait for background submissions to settle."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for job in list(self._tasks):
            job.cancel()
        await self.drain()

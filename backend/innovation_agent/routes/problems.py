"""Module for handling problem submission API endpoints.

This module provides endpoints for submitting problem statements, following
their progress, and reading back stored problems, solutions and the
dashboard view.
"""

import logging
from typing import Annotated, Any

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Path,
    Query,
    Request,
    Response,
    status,
)
from pydantic import BaseModel, Field

from innovation_agent.schemas import (
    LiteratureReview,
    Problem,
    Solution,
    SubmissionOutcome,
)
from innovation_agent.services.dashboard import build_dashboard
from innovation_agent.services.persistence import (
    IdentityProvider,
    NotAuthenticatedError,
    PersistenceError,
    Principal,
    ProblemStore,
)
from innovation_agent.services.pipeline import SAVE_FAILED, SubmissionPipeline
from innovation_agent.services.progress import ProgressBoard

router = APIRouter(prefix="", tags=["problems"])
logger = logging.getLogger(__name__)

# Constants
MAX_DESCRIPTION_LENGTH = 5000
MAX_WAIT_SECONDS = 120.0


# Models
class SubmitRequest(BaseModel):
    """Request model for a problem submission."""

    description: str = Field(..., max_length=MAX_DESCRIPTION_LENGTH)
    title: str | None = Field(None, max_length=200)
    category: str | None = Field(None, max_length=100)


class SubmitResponse(BaseModel):
    """Response model for an accepted submission."""

    problem: Problem
    progress: dict[str, Any] | None = None


class SolutionsResponse(BaseModel):
    """Response model for the stored solutions of a problem."""

    problem_id: str
    solutions: list[Solution]
    literature_review: LiteratureReview | None = None
    source: str | None = None
    note: str | None = None


# Helper functions
def raise_not_found(detail: str = "Resource not found") -> None:
    """Raise a 404 Not Found error with custom detail message.

    Args:
        detail: Custom error message to include in response.

    """
    raise HTTPException(status_code=404, detail=detail)


def raise_internal_error(detail: str = "Internal server error") -> None:
    """Raise a 500 Internal Server Error with custom detail message.

    Args:
        detail: Custom error message to include in response.

    """
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )


def raise_bad_request(detail: str) -> None:
    """Raise a 400 Bad Request error with custom detail message.

    Args:
        detail: Custom error message to include in response.

    """
    raise HTTPException(status_code=400, detail=detail)


def raise_unauthorized(detail: str = "User not authenticated") -> None:
    """Raise a 401 Unauthorized error."""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def validate_description(description: str) -> str:
    """Trim a problem description and reject it when empty.

    Raises:
        HTTPException: If the description is blank.

    """
    cleaned = description.strip()
    if not cleaned:
        raise_bad_request("Problem description is required")
    return cleaned


# Dependency injections
def _service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.error("%s not initialised", label)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} unavailable",
        )
    return service


def get_store(request: Request) -> ProblemStore:
    """Return the application's problem store."""
    return _service(request, "store", "Persistence service")


def get_pipeline(request: Request) -> SubmissionPipeline:
    """Return the application's submission pipeline."""
    return _service(request, "pipeline", "Submission service")


def get_progress(request: Request) -> ProgressBoard:
    """Return the application's progress board."""
    return _service(request, "progress", "Progress service")


async def get_principal(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> Principal:
    """Resolve the bearer token on the request into a principal.

    Raises:
        HTTPException: 401 if the token is missing or rejected, 503 if the
            identity provider cannot be reached.

    """
    identity: IdentityProvider = _service(request, "identity", "Identity service")
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise_unauthorized()

    try:
        return await identity.resolve(token)
    except NotAuthenticatedError:
        raise_unauthorized()
    except PersistenceError as e:
        logger.exception("Identity lookup failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity service unavailable",
        ) from e


async def load_problem(
    store: ProblemStore,
    principal: Principal,
    problem_id: str,
) -> Problem:
    """Fetch a problem owned by the principal.

    Raises:
        HTTPException: If the problem does not exist or cannot be read.

    """
    try:
        problem = await store.get_problem(principal, problem_id)
    except NotAuthenticatedError:
        raise_unauthorized()
    except PersistenceError as e:
        logger.exception("Error loading problem")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load problem",
        ) from e
    if problem is None:
        logger.info("Problem not found: %s", problem_id)
        raise_not_found("Problem not found")
    return problem


ProblemId = Annotated[str, Path(description="ID of the problem", min_length=1)]


# Endpoints
@router.post(
    "/submit",
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"description": "Empty problem description"},
        401: {"description": "Not authenticated"},
        502: {"description": "Problem could not be saved"},
    },
    response_model=SubmitResponse,
)
async def submit_problem(
    submission: SubmitRequest,
    principal: Annotated[Principal, Depends(get_principal)],
    pipeline: Annotated[SubmissionPipeline, Depends(get_pipeline)],
    progress: Annotated[ProgressBoard, Depends(get_progress)],
) -> SubmitResponse:
    """Save a problem and generate its solutions in the background.

    The problem is stored before this returns; generation, persistence of
    the solutions and completion continue after the response and can be
    followed through the progress endpoints.
    """
    description = validate_description(submission.description)
    try:
        problem = await pipeline.start(
            principal, description, submission.title, submission.category,
        )
    except NotAuthenticatedError:
        raise_unauthorized()
    except PersistenceError as e:
        logger.exception("Error creating problem")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=SAVE_FAILED,
        ) from e

    return SubmitResponse(problem=problem, progress=await progress.snapshot(problem.id))


@router.post(
    "/solve",
    responses={
        400: {"description": "Empty problem description"},
        401: {"description": "Not authenticated"},
        500: {"description": "Submission failed"},
    },
    response_model=SubmissionOutcome,
)
async def solve_problem(
    submission: SubmitRequest,
    principal: Annotated[Principal, Depends(get_principal)],
    pipeline: Annotated[SubmissionPipeline, Depends(get_pipeline)],
) -> SubmissionOutcome:
    """Run a whole submission inside the request and return its outcome."""
    description = validate_description(submission.description)
    outcome = await pipeline.submit(
        principal, description, submission.title, submission.category,
    )
    if not outcome.success:
        if outcome.problem is None and outcome.error == "User not authenticated":
            raise_unauthorized()
        raise_internal_error(outcome.error or "Submission failed")
    return outcome


@router.get("", response_model=list[Problem])
async def list_problems(
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
) -> list[Problem]:
    """List the caller's problems, newest first."""
    try:
        return await store.list_problems(principal)
    except NotAuthenticatedError:
        raise_unauthorized()
    except PersistenceError as e:
        logger.exception("Failed to list problems")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load problems",
        ) from e


@router.get(
    "/{problem_id}",
    responses={404: {"description": "Problem not found"}},
    response_model=Problem,
)
async def get_problem(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
) -> Problem:
    """Get one problem with its current status."""
    return await load_problem(store, principal, problem_id)


@router.delete(
    "/{problem_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Problem not found"}},
)
async def delete_problem(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    progress: Annotated[ProgressBoard, Depends(get_progress)],
    pipeline: Annotated[SubmissionPipeline, Depends(get_pipeline)],
) -> Response:
    """Delete a problem together with its solutions, progress and cached outcome."""
    await load_problem(store, principal, problem_id)
    try:
        await store.delete_problem(principal, problem_id)
    except PersistenceError as e:
        logger.exception("Failed to delete problem")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to delete problem",
        ) from e
    await progress.discard(problem_id)
    pipeline.discard_outcome(problem_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{problem_id}/solutions",
    responses={404: {"description": "Problem not found"}},
    response_model=SolutionsResponse,
)
async def get_solutions(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    pipeline: Annotated[SubmissionPipeline, Depends(get_pipeline)],
) -> SolutionsResponse:
    """Get the stored solutions of a problem, most innovative first."""
    await load_problem(store, principal, problem_id)
    try:
        solutions = await store.list_solutions(principal, problem_id)
    except PersistenceError as e:
        logger.exception("Failed to list solutions")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load solutions",
        ) from e

    outcome = pipeline.outcome(problem_id)
    return SolutionsResponse(
        problem_id=problem_id,
        solutions=solutions,
        literature_review=outcome.literature_review if outcome else None,
        source=outcome.source if outcome else None,
        note=outcome.note if outcome else None,
    )


@router.get(
    "/{problem_id}/progress",
    responses={404: {"description": "No progress tracked for this problem"}},
)
async def get_progress_board(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    progress: Annotated[ProgressBoard, Depends(get_progress)],
) -> dict[str, Any]:
    """Current four-stage progress of a submission."""
    await load_problem(store, principal, problem_id)
    board = await progress.snapshot(problem_id)
    if board is None:
        raise_not_found("No progress tracked for this problem")
    return board


@router.get(
    "/{problem_id}/progress/wait",
    responses={404: {"description": "No progress tracked for this problem"}},
)
async def wait_for_progress(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    progress: Annotated[ProgressBoard, Depends(get_progress)],
    timeout: Annotated[float, Query(gt=0, le=MAX_WAIT_SECONDS)] = 30.0,
) -> dict[str, Any]:
    """Long-poll until the submission finishes or the timeout passes."""
    await load_problem(store, principal, problem_id)
    board = await progress.wait(problem_id, timeout=timeout)
    if board is None:
        raise_not_found("No progress tracked for this problem")
    return board


@router.delete(
    "/{problem_id}/progress",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "No progress tracked for this problem"}},
)
async def cancel_progress(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    progress: Annotated[ProgressBoard, Depends(get_progress)],
) -> Response:
    """Stop following a submission. The submission itself keeps running."""
    await load_problem(store, principal, problem_id)
    if not await progress.cancel(problem_id):
        raise_not_found("No progress tracked for this problem")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{problem_id}/dashboard",
    responses={404: {"description": "Problem not found"}},
)
async def get_dashboard(
    problem_id: ProblemId,
    principal: Annotated[Principal, Depends(get_principal)],
    store: Annotated[ProblemStore, Depends(get_store)],
    pipeline: Annotated[SubmissionPipeline, Depends(get_pipeline)],
) -> dict[str, Any]:
    """Ranked, display-scaled view of a problem's solutions."""
    problem = await load_problem(store, principal, problem_id)
    try:
        solutions = await store.list_solutions(principal, problem_id)
    except PersistenceError as e:
        logger.exception("Failed to build dashboard")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load solutions",
        ) from e

    outcome = pipeline.outcome(problem_id)
    view = build_dashboard(
        solutions,
        literature_review=outcome.literature_review if outcome else None,
        source=outcome.source if outcome else None,
        note=outcome.note if outcome else None,
    )
    view["problem"] = problem.model_dump(mode="json")
    return view

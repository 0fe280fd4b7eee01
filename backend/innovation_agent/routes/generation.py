"""Solution generation function endpoint.

Accepts ``{"problemDescription": ...}`` and answers with three solutions,
either from the model or from the fallback catalogue.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from innovation_agent.services.llm_service import LLMService

router = APIRouter(prefix="", tags=["generation"])
logger = logging.getLogger(__name__)

GENERATE_PATH = "/generate-solutions"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}
FAILURE_DETAILS = (
    "Failed to generate solutions. Please check your OpenAI API credits or try again later."
)


class GenerateRequest(BaseModel):
    """Request body of the generation endpoint."""

    problem_description: str | None = Field(None, alias="problemDescription")


def get_llm_service(request: Request) -> LLMService:
    """Return the application's shared LLM service.

    Raises:
        HTTPException: If the service was not initialised.

    """
    llm = getattr(request.app.state, "llm_service", None)
    if llm is None:
        logger.error("LLM service not initialised")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI service unavailable",
        )
    return llm


def _error_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": message, "details": FAILURE_DETAILS},
        headers=CORS_HEADERS,
    )


@router.options(GENERATE_PATH, include_in_schema=False)
async def generate_solutions_preflight() -> Response:
    """Answer CORS preflight requests."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.post(
    GENERATE_PATH,
    responses={500: {"description": "Missing description, malformed body or generation failure"}},
)
async def generate_solutions(
    request: Request,
    llm: Annotated[LLMService, Depends(get_llm_service)],
) -> JSONResponse:
    """Generate three solutions for a problem description.

    Upstream unavailability is answered with the fallback set and a ``note``;
    a missing description, an unreadable body or an unexpected failure gives
    a 500 with ``{error, details}``.
    """
    try:
        raw = await request.json()
    except ValueError as e:
        logger.warning("Unreadable generate-solutions body: %s", e)
        return _error_response("Request body must be a JSON object")

    try:
        body = GenerateRequest.model_validate(raw if isinstance(raw, dict) else {})
    except ValidationError:
        return _error_response("Problem description must be a string")

    description = (body.problem_description or "").strip()
    logger.info("Processing problem: %s", description[:100])
    if not description:
        return _error_response("Problem description is required")

    try:
        result = await llm.generate_solutions(description)
    except Exception as e:
        logger.exception("Error in generate-solutions endpoint")
        return _error_response(str(e))

    payload: dict[str, Any] = {
        "solutions": llm.describe_solutions(result),
        "literatureReview": (
            result.literature_review.model_dump(by_alias=True)
            if result.literature_review
            else None
        ),
        "source": result.source,
    }
    if result.note:
        payload["note"] = result.note
    if result.fallback_reason:
        payload["fallbackReason"] = result.fallback_reason.value
    return JSONResponse(content=payload, headers=CORS_HEADERS)

from typing import List, Dict, Optional, Any
import json
import logging

import httpx
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from configs.config import Config

from innovation_agent.schemas import (
    SOLUTIONS_PER_PROBLEM,
    FallbackReason,
    GeneratedSolution,
    GenerationResult,
    LiteratureReview,
)
from innovation_agent.services.fallback_catalog import FallbackCatalog
from innovation_agent.services.mlflow_logger import MLFlowLogger

logger = logging.getLogger(__name__)

RATE_LIMITED = 429

SYSTEM_MESSAGE = (
    "You are an expert innovation consultant. Always respond with valid JSON "
    "containing exactly 3 solution objects with the specified structure."
)

PROMPT_TEMPLATE = """You are an expert innovation consultant with access to extensive research databases, academic literature, and industry reports.

Problem: {description}

Based on your analysis of relevant research literature, academic papers, industry reports, and emerging technology trends, generate exactly 3 innovative solutions.

For each solution, provide:
1. A clear, compelling title (max 50 characters)
2. A detailed description (2-3 sentences explaining the approach and implementation)
3. A feasibility score (1-100, considering current technology and resources)
4. A cost estimate (realistic budget needed, e.g., "2.5M initial investment")
5. A sustainability score (1-100, environmental and long-term viability)
6. An innovation score (1-100, how novel and creative the approach is)
7. An agent type (choose from: "technology", "biotechnology", "social_innovation", "policy", "business_model")
8. Key research sources (3-5 relevant academic papers, reports, or studies that informed this solution)

Focus on solutions that are:
- Innovative yet practical
- Scalable and impactful
- Based on current or emerging technologies
- Addressing root causes, not just symptoms
- Grounded in recent research and evidence

Return your response as a valid JSON object with this structure:
{{
  "solutions": [
    {{
      "title": "",
      "description": "",
      "feasibilityScore": 0,
      "costEstimate": "",
      "sustainabilityScore": 0,
      "innovationScore": 0,
      "agentType": "",
      "researchSources": []
    }}
  ],
  "literatureReview": {{
    "searchTerms": [],
    "keyFindings": "",
    "researchSources": []
  }}
}}"""


class InvalidGenerationResponse(ValueError):
    """The model answered, but not with three usable solutions."""


class LLMService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        catalog: Optional[FallbackCatalog] = None,
    ):
        self.api_key = api_key if api_key is not None else Config.OPENAI_API_KEY
        self.base_url = Config.OPENAI_BASE_URL.rstrip('/')
        self.model = Config.OPENAI_MODEL
        self.timeout = httpx.Timeout(Config.LLM_TIMEOUT)
        self.client = client or httpx.AsyncClient()
        self.catalog = catalog or FallbackCatalog()
        self.mlflow_logger = MLFlowLogger()
        self.max_attempts = Config.LLM_MAX_ATTEMPTS

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def build_prompt(self, description: str) -> str:
        return PROMPT_TEMPLATE.format(description=description.strip())

    async def _chat(self, prompt: str, system_message: str, temperature: float = 0.8) -> str:
        """Send one chat completion request and return the message content."""
        # Only connection-level failures are retried; HTTP errors surface at once.
        retrying = retry(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        response = await retrying(self.client.post)(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": prompt},
                ],
                "max_tokens": 2000,
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            },
            timeout=self.timeout,
        )
        response.raise_for_status()

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise InvalidGenerationResponse("Malformed completion payload") from e
        if not content or not content.strip():
            raise InvalidGenerationResponse("Empty response content")
        return content

    def parse_solutions(self, content: str) -> Dict[str, Any]:
        """Parse model output into validated solutions and an optional literature review.

        Accepts either a bare JSON array or an object with a ``solutions`` key.
        """
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidGenerationResponse("Response is not valid JSON") from e

        if isinstance(parsed, list):
            raw_solutions, raw_review = parsed, None
        elif isinstance(parsed, dict):
            raw_solutions = parsed.get("solutions") or []
            raw_review = parsed.get("literatureReview")
        else:
            raise InvalidGenerationResponse("Unexpected JSON shape")

        if not isinstance(raw_solutions, list) or not raw_solutions:
            raise InvalidGenerationResponse("Response holds no solutions")
        if len(raw_solutions) < SOLUTIONS_PER_PROBLEM:
            raise InvalidGenerationResponse(
                f"Expected {SOLUTIONS_PER_PROBLEM} solutions, got {len(raw_solutions)}"
            )

        try:
            solutions = [
                GeneratedSolution.model_validate(item)
                for item in raw_solutions[:SOLUTIONS_PER_PROBLEM]
            ]
        except ValidationError as e:
            raise InvalidGenerationResponse(f"Invalid solution fields: {e.error_count()} errors") from e

        review = None
        if isinstance(raw_review, dict):
            try:
                review = LiteratureReview.model_validate(raw_review)
            except ValidationError:
                logger.warning("Dropping malformed literature review")

        return {"solutions": solutions, "literature_review": review}

    async def generate_solutions(self, description: str) -> GenerationResult:
        """Generate exactly three scored solutions for a problem description.

        Upstream trouble (no key, rate limiting, bad payloads, HTTP or
        transport errors) is absorbed by serving the fallback catalogue.
        Only an empty description raises.
        """
        if not description or not description.strip():
            raise ValueError("Problem description is required")

        if not self.api_key:
            logger.info("No OpenAI API key found, using fallback solutions")
            return self.catalog.build_result(description, FallbackReason.MISSING_CREDENTIALS)

        prompt = self.build_prompt(description)
        try:
            logger.info("Calling OpenAI API...")
            content = await self._chat(prompt, SYSTEM_MESSAGE)
            parsed = self.parse_solutions(content)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("OpenAI API error: %s %s", status_code, e.response.text[:200])
            await self.mlflow_logger.alog_generation(
                prompt={"description": description, "prompt": prompt},
                response=f"HTTP error {status_code}",
                metadata={"error": True, "status_code": status_code},
            )
            if status_code == RATE_LIMITED:
                logger.info("OpenAI quota exceeded, using fallback solutions")
                return self.catalog.build_result(description, FallbackReason.RATE_LIMITED)
            return self.catalog.build_result(description, FallbackReason.UPSTREAM_ERROR)
        except InvalidGenerationResponse as e:
            logger.error("Error parsing OpenAI response: %s", e)
            await self.mlflow_logger.alog_generation(
                prompt={"description": description, "prompt": prompt},
                response=str(e),
                metadata={"error": True, "invalid_response": True},
            )
            return self.catalog.build_result(description, FallbackReason.INVALID_RESPONSE)
        except httpx.HTTPError as e:
            logger.exception("OpenAI request failed")
            await self.mlflow_logger.alog_generation(
                prompt={"description": description, "prompt": prompt},
                response=f"Generation failed: {str(e)}",
                metadata={"error": True, "exception": str(e)},
            )
            return self.catalog.build_result(description, FallbackReason.UPSTREAM_ERROR)
        except Exception:
            logger.exception("Unexpected generation failure, using fallback solutions")
            return self.catalog.build_result(description, FallbackReason.UPSTREAM_ERROR)

        logger.info("Generated %d solutions", len(parsed["solutions"]))
        await self.mlflow_logger.alog_generation(
            prompt={"description": description, "prompt": prompt},
            response=content,
            metadata={"method": "generate_solutions", "model": self.model},
        )
        return GenerationResult(
            solutions=parsed["solutions"],
            literature_review=parsed["literature_review"],
            source="openai",
        )

    def describe_solutions(self, result: GenerationResult) -> List[Dict[str, Any]]:
        """Solutions in the camelCase wire shape of the function endpoint."""
        return [s.model_dump(mode="json", by_alias=True) for s in result.solutions]

"""Module providing the deterministic fallback solution set from a TOML file."""
import logging
from pathlib import Path
from typing import Any

import toml
from configs.config import Config
from pydantic import ValidationError

from innovation_agent.schemas import (
    SOLUTIONS_PER_PROBLEM,
    FallbackReason,
    GeneratedSolution,
    GenerationResult,
    LiteratureReview,
)

logger = logging.getLogger(__name__)

SEARCH_TERM_WORDS = 3


class FallbackCatalog:
    """Loads the fallback catalogue and builds demo-mode generation results."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the catalogue with an empty cache."""
        self.path = path or Config.FALLBACK_CATALOG
        self._cache: dict[str, Any] | None = None
        self._last_modified: float | None = None

    def load(self) -> dict[str, Any]:
        """Load and validate the catalogue, reusing the cache while the file is unchanged."""
        mtime = self.path.stat().st_mtime
        if self._cache is not None and self._last_modified == mtime:
            return self._cache

        with self.path.open(encoding="utf-8") as f:
            data = toml.load(f)

        try:
            solutions = [GeneratedSolution(**item) for item in data.get("solutions", [])]
            review = LiteratureReview(**data.get("literature_review", {}))
        except ValidationError as e:
            logger.exception("Invalid fallback catalogue %s", self.path)
            msg = f"Invalid fallback catalogue: {self.path}"
            raise ValueError(msg) from e

        if len(solutions) != SOLUTIONS_PER_PROBLEM:
            msg = (
                f"Fallback catalogue must hold exactly {SOLUTIONS_PER_PROBLEM} "
                f"solutions, found {len(solutions)}"
            )
            raise ValueError(msg)

        self._cache = {
            "solutions": solutions,
            "literature_review": review,
            "note": data.get("note", ""),
        }
        self._last_modified = mtime
        logger.info("Loaded fallback catalogue from %s", self.path)
        return self._cache

    def build_result(self, description: str, reason: FallbackReason) -> GenerationResult:
        """Return the fallback set, with search terms seeded from the description."""
        catalog = self.load()
        review: LiteratureReview = catalog["literature_review"]
        seed = " ".join(description.split()[:SEARCH_TERM_WORDS])

        search_terms = list(review.search_terms)
        if seed:
            search_terms.append(seed)

        return GenerationResult(
            solutions=[s.model_copy(deep=True) for s in catalog["solutions"]],
            literature_review=review.model_copy(update={"search_terms": search_terms}),
            source="fallback",
            note=catalog["note"],
            fallback_reason=reason,
        )

"""View models for the solutions dashboard."""

from typing import Any

from innovation_agent.schemas import LiteratureReview, Solution

DISPLAY_SCALE = 10
HIGH_SCORE = 8
MEDIUM_SCORE = 6

SOURCE_INFO = {
    "openai": {
        "name": "OpenAI GPT",
        "description": "Advanced AI analysis powered by OpenAI's language models",
    },
    "fallback": {
        "name": "Demo Mode",
        "description": "Sample solutions for demonstration - Connect AI for real analysis",
    },
}


def display_score(raw: float) -> float:
    """Map a 0-100 score onto the 0-10 display scale."""
    return raw / DISPLAY_SCALE


def overall_score(feasibility: float, sustainability: float, innovation: float) -> float:
    """Unweighted mean of the three axes on the 0-10 scale."""
    return (feasibility + sustainability + innovation) / 30


def score_band(score: float) -> str:
    if score >= HIGH_SCORE:
        return "high"
    if score >= MEDIUM_SCORE:
        return "medium"
    return "low"


def solution_card(solution: Solution) -> dict[str, Any]:
    overall = overall_score(
        solution.feasibility_score,
        solution.sustainability_score,
        solution.innovation_score,
    )
    return {
        "id": solution.id,
        "title": solution.title,
        "description": solution.description,
        "agent_type": solution.agent_type.value,
        "cost_estimate": solution.cost_estimate,
        "feasibility": display_score(solution.feasibility_score),
        "sustainability": display_score(solution.sustainability_score),
        "innovation": display_score(solution.innovation_score),
        "overall_score": overall,
        "band": score_band(overall),
        "research_sources": list(solution.research_sources),
    }


def build_dashboard(
    solutions: list[Solution],
    literature_review: LiteratureReview | None = None,
    source: str | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    """Rank solutions by overall score and summarise them."""
    cards = sorted(
        (solution_card(s) for s in solutions),
        key=lambda card: card["overall_score"],
        reverse=True,
    )
    scores = [card["overall_score"] for card in cards]
    summary = {
        "total_solutions": len(cards),
        "highest_score": max(scores) if scores else 0.0,
        "average_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
    }
    info = SOURCE_INFO.get(source or "fallback", SOURCE_INFO["fallback"])
    return {
        "source": source,
        "source_info": info,
        "note": note,
        "summary": summary,
        "literature_review": (
            literature_review.model_dump(by_alias=True) if literature_review else None
        ),
        "solutions": cards,
    }

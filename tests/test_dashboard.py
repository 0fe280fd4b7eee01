import itertools
from datetime import UTC, datetime

import pytest

from innovation_agent.schemas import LiteratureReview, Solution
from innovation_agent.services.dashboard import (
    build_dashboard,
    display_score,
    overall_score,
    score_band,
)


def solution(title, feasibility, sustainability, innovation):
    return Solution(
        id=title,
        problem_id="p-1",
        user_id="user-1",
        title=title,
        description="...",
        feasibility_score=feasibility,
        cost_estimate="$1M",
        sustainability_score=sustainability,
        innovation_score=innovation,
        agent_type="technology",
        created_at=datetime.now(UTC),
    )


@pytest.mark.parametrize(
    ("f", "s", "i"),
    list(itertools.product((0, 37, 50, 99, 100), repeat=3)),
)
def test_overall_score_is_mean_on_ten_point_scale(f, s, i):
    assert overall_score(f, s, i) == pytest.approx((f + s + i) / 30)
    assert 0 <= overall_score(f, s, i) <= 10


def test_display_score():
    assert display_score(85) == 8.5


@pytest.mark.parametrize(
    ("score", "band"),
    [(10, "high"), (8.0, "high"), (7.9, "medium"), (6.0, "medium"), (5.99, "low")],
)
def test_score_band(score, band):
    assert score_band(score) == band


def test_dashboard_ranks_and_summarises():
    view = build_dashboard(
        [
            solution("middle", 70, 70, 70),
            solution("best", 90, 90, 90),
            solution("worst", 40, 50, 60),
        ],
        literature_review=LiteratureReview(search_terms=["plastic"]),
        source="openai",
    )

    assert [card["title"] for card in view["solutions"]] == ["best", "middle", "worst"]
    assert view["solutions"][0]["feasibility"] == 9.0
    assert view["solutions"][0]["band"] == "high"
    assert view["solutions"][2]["band"] == "low"
    assert view["summary"] == {
        "total_solutions": 3,
        "highest_score": 9.0,
        "average_score": 7.0,
    }
    assert view["source_info"]["name"] == "OpenAI GPT"
    assert view["literature_review"]["searchTerms"] == ["plastic"]


def test_empty_dashboard_defaults_to_demo_mode():
    view = build_dashboard([])

    assert view["solutions"] == []
    assert view["summary"]["highest_score"] == 0.0
    assert view["source_info"]["name"] == "Demo Mode"

import json

import httpx
import pytest

from innovation_agent.schemas import AgentType, FallbackReason
from innovation_agent.services.llm_service import InvalidGenerationResponse

REQUIRED_FIELDS = {
    "title",
    "description",
    "feasibilityScore",
    "costEstimate",
    "sustainabilityScore",
    "innovationScore",
    "agentType",
}


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def model_solution(i, **overrides):
    solution = {
        "title": f"Idea {i}",
        "description": f"Description of idea {i}",
        "feasibilityScore": 70,
        "costEstimate": "$2M",
        "sustainabilityScore": 80,
        "innovationScore": 60 + i,
        "agentType": "policy",
        "researchSources": ["UNEP 2023 report"],
    }
    solution.update(overrides)
    return solution


def answer(payload):
    def handler(request):
        return httpx.Response(200, json=completion(json.dumps(payload)))
    return handler


def fail_if_called(request):
    raise AssertionError("upstream should not be called")


async def test_no_key_serves_fallback_without_calling_upstream(make_llm):
    llm = make_llm(fail_if_called, api_key="")

    result = await llm.generate_solutions("Reduce ocean plastic pollution")

    assert result.source == "fallback"
    assert result.fallback_reason is FallbackReason.MISSING_CREDENTIALS
    assert result.note
    assert len(result.solutions) == 3
    assert "Reduce ocean plastic" in result.literature_review.search_terms


async def test_rate_limit_serves_fallback(make_llm):
    llm = make_llm(lambda request: httpx.Response(429, json={"error": "quota"}))

    result = await llm.generate_solutions("Cut food waste")

    assert result.is_fallback
    assert result.fallback_reason is FallbackReason.RATE_LIMITED
    assert len(result.solutions) == 3


async def test_server_error_serves_fallback(make_llm):
    llm = make_llm(lambda request: httpx.Response(500, text="boom"))

    result = await llm.generate_solutions("Cut food waste")

    assert result.fallback_reason is FallbackReason.UPSTREAM_ERROR


async def test_transport_error_serves_fallback(make_llm):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    result = await make_llm(handler).generate_solutions("Cut food waste")

    assert result.fallback_reason is FallbackReason.UPSTREAM_ERROR


async def test_unparseable_content_serves_fallback(make_llm):
    llm = make_llm(lambda request: httpx.Response(200, json=completion("not json at all")))

    result = await llm.generate_solutions("Cut food waste")

    assert result.fallback_reason is FallbackReason.INVALID_RESPONSE


async def test_too_few_solutions_serves_fallback(make_llm):
    llm = make_llm(answer({"solutions": [model_solution(1), model_solution(2)]}))

    result = await llm.generate_solutions("Cut food waste")

    assert result.fallback_reason is FallbackReason.INVALID_RESPONSE


async def test_model_solutions_are_returned(make_llm):
    payload = {
        "solutions": [model_solution(i) for i in range(3)],
        "literatureReview": {
            "searchTerms": ["food waste"],
            "keyFindings": "Cold chains matter",
            "researchSources": ["FAO"],
        },
    }
    result = await make_llm(answer(payload)).generate_solutions("Cut food waste")

    assert result.source == "openai"
    assert result.note is None
    assert result.fallback_reason is None
    assert [s.title for s in result.solutions] == ["Idea 0", "Idea 1", "Idea 2"]
    assert all(s.agent_type is AgentType.POLICY for s in result.solutions)
    assert result.literature_review.key_findings == "Cold chains matter"


async def test_bare_array_is_accepted_and_extra_solutions_dropped(make_llm):
    llm = make_llm(answer([model_solution(i) for i in range(5)]))

    result = await llm.generate_solutions("Cut food waste")

    assert result.source == "openai"
    assert len(result.solutions) == 3
    assert result.literature_review is None


async def test_out_of_range_scores_are_clamped(make_llm):
    payload = [
        model_solution(0, feasibilityScore=140),
        model_solution(1, sustainabilityScore=-5),
        model_solution(2, innovationScore="87.6"),
    ]
    result = await make_llm(answer(payload)).generate_solutions("Cut food waste")

    assert result.solutions[0].feasibility_score == 100
    assert result.solutions[1].sustainability_score == 0
    assert result.solutions[2].innovation_score == 88


async def test_unknown_agent_type_serves_fallback(make_llm):
    payload = [model_solution(0, agentType="magic"), model_solution(1), model_solution(2)]

    result = await make_llm(answer(payload)).generate_solutions("Cut food waste")

    assert result.fallback_reason is FallbackReason.INVALID_RESPONSE


async def test_request_shape(make_llm):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion(json.dumps([model_solution(i) for i in range(3)])))

    await make_llm(handler).generate_solutions("Reduce ocean plastic pollution")

    body = seen["body"]
    assert seen["url"].endswith("/chat/completions")
    assert seen["auth"] == "Bearer test-key"
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 2000
    assert body["temperature"] == 0.8
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert "Reduce ocean plastic pollution" in body["messages"][1]["content"]


@pytest.mark.parametrize("description", ["", "   "])
async def test_empty_description_raises(make_llm, description):
    llm = make_llm(fail_if_called)

    with pytest.raises(ValueError, match="required"):
        await llm.generate_solutions(description)


async def test_every_result_has_required_fields(make_llm):
    for handler in (
        answer([model_solution(i) for i in range(3)]),
        lambda request: httpx.Response(429),
        lambda request: httpx.Response(200, json={"choices": []}),
    ):
        llm = make_llm(handler)
        result = await llm.generate_solutions("Improve rural internet access")
        described = llm.describe_solutions(result)
        assert len(described) == 3
        for solution in described:
            assert REQUIRED_FIELDS <= solution.keys()
            assert solution["agentType"] in {t.value for t in AgentType}


def test_parse_rejects_scalar_json(make_llm):
    llm = make_llm(fail_if_called)

    with pytest.raises(InvalidGenerationResponse):
        llm.parse_solutions("42")

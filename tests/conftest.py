import os

# Config is read once on import, so the environment is fixed before any app module loads.
os.environ["OPENAI_API_KEY"] = ""
os.environ["MLFLOW_TRACKING_URI"] = ""
os.environ["PERSISTENCE_BACKEND"] = "memory"
os.environ["PROGRESS_MODE"] = "milestones"
os.environ["LLM_MAX_ATTEMPTS"] = "1"

import httpx
import pytest
from prefect.testing.utilities import prefect_test_harness

from innovation_agent.schemas import GeneratedSolution
from innovation_agent.services.fallback_catalog import FallbackCatalog
from innovation_agent.services.llm_service import LLMService
from innovation_agent.services.persistence import InMemoryStore, Principal


@pytest.fixture(autouse=True, scope="session")
def prefect_harness():
    with prefect_test_harness():
        yield


@pytest.fixture
def principal():
    return Principal(user_id="user-1", access_token="token-1")


@pytest.fixture
def other_principal():
    return Principal(user_id="user-2", access_token="token-2")


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def catalog():
    return FallbackCatalog()


@pytest.fixture
def generated():
    return [
        GeneratedSolution(
            title=f"Solution {i}",
            description=f"Approach number {i}",
            feasibility_score=60 + i,
            cost_estimate="$1M",
            sustainability_score=70 + i,
            innovation_score=80 + i,
            agent_type="technology",
            research_sources=["Nature"],
        )
        for i in range(3)
    ]


@pytest.fixture
def make_llm(catalog):
    """Build an LLMService whose upstream is answered by ``handler``."""
    def factory(handler, api_key="test-key"):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return LLMService(api_key=api_key, client=client, catalog=catalog)

    return factory

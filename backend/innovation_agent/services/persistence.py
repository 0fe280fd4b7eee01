"""Persistence for problems and solutions, scoped by an explicit principal.

Two stores share one interface: ``InMemoryStore`` for development and
tests, and ``SupabaseStore`` which talks to a Supabase project's PostgREST
API over httpx using the caller's own access token.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx
from configs.config import Config
from pydantic import BaseModel, ConfigDict, SecretStr

from innovation_agent.schemas import (
    GeneratedSolution,
    Problem,
    ProblemStatus,
    Solution,
    default_title,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED = 401
NOT_AUTHENTICATED = "User not authenticated"


class PersistenceError(RuntimeError):
    """A store operation failed."""


class NotAuthenticatedError(PersistenceError):
    """No principal, or the store rejected the principal's token."""


class Principal(BaseModel):
    """The authenticated user every store call acts on behalf of.

    The token is a secret so it stays masked wherever the principal is
    serialised, including workflow run parameters.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    access_token: SecretStr


def _require(principal: Principal | None) -> Principal:
    if principal is None or not principal.user_id:
        raise NotAuthenticatedError(NOT_AUTHENTICATED)
    return principal


def _now() -> datetime:
    return datetime.now(UTC)


class ProblemStore:
    """Interface shared by the store backends."""

    async def create_problem(
        self,
        principal: Principal,
        description: str,
        title: str | None = None,
        category: str | None = None,
    ) -> Problem:
        raise NotImplementedError

    async def list_problems(self, principal: Principal) -> list[Problem]:
        raise NotImplementedError

    async def get_problem(self, principal: Principal, problem_id: str) -> Problem | None:
        raise NotImplementedError

    async def update_problem_status(
        self, principal: Principal, problem_id: str, status: ProblemStatus,
    ) -> Problem:
        raise NotImplementedError

    async def delete_problem(self, principal: Principal, problem_id: str) -> None:
        raise NotImplementedError

    async def create_solutions(
        self,
        principal: Principal,
        problem_id: str,
        solutions: list[GeneratedSolution],
    ) -> list[Solution]:
        raise NotImplementedError

    async def list_solutions(self, principal: Principal, problem_id: str) -> list[Solution]:
        raise NotImplementedError

    async def delete_solutions(self, principal: Principal, problem_id: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any held resources."""


class InMemoryStore(ProblemStore):
    """Dict-backed store guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._problems: dict[str, Problem] = {}
        self._solutions: dict[str, list[Solution]] = {}
        self._lock = asyncio.Lock()

    async def create_problem(self, principal, description, title=None, category=None):
        principal = _require(principal)
        now = _now()
        problem = Problem(
            id=str(uuid4()),
            user_id=principal.user_id,
            title=title or default_title(description),
            description=description,
            category=category,
            status=ProblemStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._problems[problem.id] = problem
            self._solutions[problem.id] = []
        return problem.model_copy()

    async def list_problems(self, principal):
        principal = _require(principal)
        async with self._lock:
            owned = [p for p in self._problems.values() if p.user_id == principal.user_id]
        owned.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy() for p in owned]

    async def get_problem(self, principal, problem_id):
        principal = _require(principal)
        async with self._lock:
            problem = self._problems.get(problem_id)
        if problem is None or problem.user_id != principal.user_id:
            return None
        return problem.model_copy()

    async def update_problem_status(self, principal, problem_id, status):
        principal = _require(principal)
        async with self._lock:
            problem = self._problems.get(problem_id)
            if problem is None or problem.user_id != principal.user_id:
                msg = f"Problem {problem_id} not found"
                raise PersistenceError(msg)
            updated = problem.model_copy(update={"status": status, "updated_at": _now()})
            self._problems[problem_id] = updated
        return updated.model_copy()

    async def delete_problem(self, principal, problem_id):
        principal = _require(principal)
        async with self._lock:
            problem = self._problems.get(problem_id)
            if problem is None or problem.user_id != principal.user_id:
                return
            del self._problems[problem_id]
            self._solutions.pop(problem_id, None)

    async def create_solutions(self, principal, problem_id, solutions):
        principal = _require(principal)
        now = _now()
        rows = [
            Solution(
                id=str(uuid4()),
                problem_id=problem_id,
                user_id=principal.user_id,
                created_at=now,
                **s.model_dump(),
            )
            for s in solutions
        ]
        async with self._lock:
            problem = self._problems.get(problem_id)
            if problem is None or problem.user_id != principal.user_id:
                msg = f"Problem {problem_id} not found"
                raise PersistenceError(msg)
            self._solutions[problem_id].extend(rows)
        return [r.model_copy() for r in rows]

    async def list_solutions(self, principal, problem_id):
        principal = _require(principal)
        async with self._lock:
            rows = [
                s for s in self._solutions.get(problem_id, [])
                if s.user_id == principal.user_id
            ]
        rows.sort(key=lambda s: s.innovation_score, reverse=True)
        return [r.model_copy() for r in rows]

    async def delete_solutions(self, principal, problem_id):
        principal = _require(principal)
        async with self._lock:
            rows = self._solutions.get(problem_id, [])
            self._solutions[problem_id] = [s for s in rows if s.user_id != principal.user_id]


class SupabaseStore(ProblemStore):
    """Store backed by the PostgREST API of a Supabase project.

    The tables it expects are created by ``configs/supabase_schema.sql``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or Config.SUPABASE_URL or "").rstrip("/")
        self.anon_key = anon_key or Config.SUPABASE_ANON_KEY or ""
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(30))

    def _headers(self, principal: Principal) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {principal.access_token.get_secret_value()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    async def _request(
        self,
        method: str,
        table: str,
        principal: Principal | None,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        principal = _require(principal)
        try:
            response = await self.client.request(
                method,
                f"{self.base_url}/rest/v1/{table}",
                params=params,
                json=json,
                headers=self._headers(principal),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == UNAUTHORIZED:
                raise NotAuthenticatedError(NOT_AUTHENTICATED) from e
            logger.error(
                "Supabase %s %s failed: %s %s",
                method, table, e.response.status_code, e.response.text[:200],
            )
            msg = f"Database operation failed on {table}"
            raise PersistenceError(msg) from e
        except httpx.HTTPError as e:
            logger.exception("Supabase request failed")
            msg = f"Database unreachable: {e}"
            raise PersistenceError(msg) from e

        if not response.content:
            return None
        return response.json()

    async def create_problem(self, principal, description, title=None, category=None):
        principal = _require(principal)
        rows = await self._request(
            "POST", "problems", principal,
            json=[{
                "user_id": principal.user_id,
                "title": title or default_title(description),
                "description": description,
                "category": category,
                "status": ProblemStatus.PENDING.value,
            }],
        )
        return Problem.model_validate(rows[0])

    async def list_problems(self, principal):
        principal = _require(principal)
        rows = await self._request(
            "GET", "problems", principal,
            params={
                "select": "*",
                "user_id": f"eq.{principal.user_id}",
                "order": "created_at.desc",
            },
        )
        return [Problem.model_validate(r) for r in rows or []]

    async def get_problem(self, principal, problem_id):
        principal = _require(principal)
        rows = await self._request(
            "GET", "problems", principal,
            params={
                "select": "*",
                "id": f"eq.{problem_id}",
                "user_id": f"eq.{principal.user_id}",
            },
        )
        if not rows:
            return None
        return Problem.model_validate(rows[0])

    async def update_problem_status(self, principal, problem_id, status):
        principal = _require(principal)
        rows = await self._request(
            "PATCH", "problems", principal,
            params={"id": f"eq.{problem_id}", "user_id": f"eq.{principal.user_id}"},
            json={"status": status.value, "updated_at": _now().isoformat()},
        )
        if not rows:
            msg = f"Problem {problem_id} not found"
            raise PersistenceError(msg)
        return Problem.model_validate(rows[0])

    async def delete_problem(self, principal, problem_id):
        principal = _require(principal)
        scope = {"user_id": f"eq.{principal.user_id}"}
        await self.delete_solutions(principal, problem_id)
        await self._request(
            "DELETE", "problems", principal,
            params={"id": f"eq.{problem_id}", **scope},
        )

    async def create_solutions(self, principal, problem_id, solutions):
        principal = _require(principal)
        # One POST, so PostgREST inserts the whole batch in a single statement.
        rows = await self._request(
            "POST", "solutions", principal,
            json=[
                {
                    "problem_id": problem_id,
                    "user_id": principal.user_id,
                    **s.model_dump(mode="json"),
                }
                for s in solutions
            ],
        )
        return [Solution.model_validate(r) for r in rows or []]

    async def list_solutions(self, principal, problem_id):
        principal = _require(principal)
        rows = await self._request(
            "GET", "solutions", principal,
            params={
                "select": "*",
                "problem_id": f"eq.{problem_id}",
                "user_id": f"eq.{principal.user_id}",
                "order": "innovation_score.desc",
            },
        )
        return [Solution.model_validate(r) for r in rows or []]

    async def delete_solutions(self, principal, problem_id):
        principal = _require(principal)
        await self._request(
            "DELETE", "solutions", principal,
            params={"problem_id": f"eq.{problem_id}", "user_id": f"eq.{principal.user_id}"},
        )

    async def aclose(self) -> None:
        await self.client.aclose()


class IdentityProvider:
    """Resolves a bearer token into a principal."""

    async def resolve(self, token: str | None) -> Principal:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any held resources."""


class LocalIdentity(IdentityProvider):
    """Development identity: the bearer token is taken as the user id."""

    async def resolve(self, token):
        if not token or not token.strip():
            raise NotAuthenticatedError(NOT_AUTHENTICATED)
        return Principal(user_id=token.strip(), access_token=token.strip())


class SupabaseIdentity(IdentityProvider):
    """Checks access tokens against the Supabase auth API."""

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or Config.SUPABASE_URL or "").rstrip("/")
        self.anon_key = anon_key or Config.SUPABASE_ANON_KEY or ""
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(10))

    async def resolve(self, token):
        if not token:
            raise NotAuthenticatedError(NOT_AUTHENTICATED)
        try:
            response = await self.client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            user = response.json()
        except httpx.HTTPStatusError as e:
            raise NotAuthenticatedError(NOT_AUTHENTICATED) from e
        except httpx.HTTPError as e:
            logger.exception("Supabase auth request failed")
            msg = "Identity provider unreachable"
            raise PersistenceError(msg) from e

        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            raise NotAuthenticatedError(NOT_AUTHENTICATED)
        return Principal(user_id=user_id, access_token=token)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_store() -> ProblemStore:
    """Create the store selected by ``PERSISTENCE_BACKEND``."""
    if Config.PERSISTENCE_BACKEND == "supabase":
        return SupabaseStore()
    return InMemoryStore()


def build_identity() -> IdentityProvider:
    """Create the identity provider matching the store backend."""
    if Config.PERSISTENCE_BACKEND == "supabase":
        return SupabaseIdentity()
    return LocalIdentity()

"""Async HTTP client for the text-completion oracle.

Provides :class:`FeedbackClient`, used to ask a language model whether a
student's query solves a task and to draft new exercise tasks.  The oracle
is opaque: any OpenAI-compatible ``/v1/chat/completions`` endpoint works.
"""

from __future__ import annotations

import logging
import re

import httpx

from sql_sandbox.models.result import DatabaseSchema, QueryCheck

logger = logging.getLogger(__name__)

_VERDICT_RE: re.Pattern[str] = re.compile(r"^\s*(YES|NO|JA|NEIN)\b[,:.]?", re.IGNORECASE)

_CHECK_SYSTEM_PROMPT = (
    "You are a SQL tutor. Decide whether the student's SQL query solves the task. "
    "Start your answer with YES or NO, followed by a short reason."
)

_TASK_SYSTEM_PROMPT = (
    "You are a SQL tutor writing exercises for students. Write one task in plain "
    "language that can be solved with a single SQL query against the given schema. "
    "Do not include the solution."
)


def parse_verdict(answer: str) -> bool:
    """``True`` if *answer* starts with an affirmative verdict."""
    match = _VERDICT_RE.match(answer)
    return match is not None and match.group(1).upper() in {"YES", "JA"}


def describe_schema(schema: DatabaseSchema) -> str:
    """Compact textual schema for prompts: one line per table."""
    lines = []
    for table in schema.tables:
        columns = ", ".join(f"{c.name} {c.data_type}" for c in table.columns)
        lines.append(f"{table.schema_name}.{table.name}({columns})")
    return "\n".join(lines)


class FeedbackClient:
    """Async HTTP client for the completion oracle.

    Parameters
    ----------
    base_url:
        Root URL of the completion API (e.g. ``https://api.openai.com``).
    api_key:
        Bearer token used for authentication.
    model:
        Model identifier sent with every request.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Send *prompt* to the oracle and return its text answer.

        Raises
        ------
        httpx.HTTPStatusError
            If the API returns a non-2xx status code.
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        resp = await self._client.post(
            "/v1/chat/completions",
            json={"model": self._model, "messages": messages, "temperature": 0},
        )
        resp.raise_for_status()
        data = resp.json()
        return data["choices"][0]["message"]["content"].strip()

    # ------------------------------------------------------------------
    # Exercise helpers
    # ------------------------------------------------------------------

    async def check_query_matches_task(self, task_description: str, query: str) -> QueryCheck:
        """Ask whether *query* is a correct answer to *task_description*."""
        answer = await self.complete(
            f"Task:\n{task_description}\n\nStudent query:\n{query}",
            system=_CHECK_SYSTEM_PROMPT,
        )
        matches = parse_verdict(answer)
        logger.info("Oracle verdict for query check: matches=%s", matches)
        return QueryCheck(matches=matches, answer=answer)

    async def generate_task(self, topic: str, difficulty: str, schema: DatabaseSchema) -> str:
        """Draft a task on *topic* at *difficulty* for the given database."""
        return await self.complete(
            f"Topic: {topic}\nDifficulty: {difficulty}\n"
            f"Database {schema.database}:\n{describe_schema(schema)}",
            system=_TASK_SYSTEM_PROMPT,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client and release resources."""
        await self._client.aclose()

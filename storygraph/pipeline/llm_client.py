"""LLM client abstraction for the text-extraction service.

Every extraction task is one ``ExtractionRequest``: the task name, the model,
the JSON schema the answer must satisfy, and the prompt. Clients return an
``LLMResponse`` carrying either the raw text or the reason the model refused.
Parsing and validation happen in the adapter so that empty, blocked and
malformed answers can be told apart and retried.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import ollama
from pydantic import BaseModel, ConfigDict, Field

from storygraph.errors import (
    ContentBlockedError,
    EmptyResponseError,
    LLMTimeoutError,
    MalformedResponseError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a narrative analysis expert. Read the story text you are given and "
    "return ONLY valid JSON in the exact format requested."
)


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    task: str = Field(..., description="Task name, e.g. 'extract_entities'")
    model: str
    response_schema: dict[str, Any] = Field(default_factory=dict, alias="schema")
    prompt: str


class LLMResponse(BaseModel):
    model_config = {"frozen": True}

    text: str | None = None
    blocked_reason: str | None = Field(None, description="Set when the model refused to answer")


class LLMClientInterface(ABC):
    """Abstract interface for LLM clients."""

    @abstractmethod
    async def complete(self, request: ExtractionRequest) -> LLMResponse:
        """Run one request in JSON-only mode.

        Raises:
            RateLimitError: the service is throttling.
            LLMTimeoutError: the request exceeded the client timeout.
        """


def _find_matching_bracket(text: str, start: int, open_char: str, close_char: str) -> int:
    """Index just past the bracket closing the one at ``start``, or -1."""
    count = 1
    i = start + 1
    in_string = False
    while i < len(text) and count > 0:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 1
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == open_char:
            count += 1
        elif ch == close_char:
            count -= 1
        i += 1
    return i if count == 0 else -1


def parse_json_from_text(response_text: str) -> dict[str, Any]:
    """Extract the first JSON object from a model answer.

    Handles markdown code fences and leading prose.

    Raises:
        MalformedResponseError: no parseable JSON object found.
    """
    text = response_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(line for line in lines[1:] if not line.startswith("```"))
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
        start = text.find("{")
        if start != -1:
            end = _find_matching_bracket(text, start, "{", "}")
            if end != -1:
                try:
                    parsed = json.loads(text[start:end])
                except json.JSONDecodeError:
                    parsed = None
    if not isinstance(parsed, dict):
        raise MalformedResponseError(f"No valid JSON object found in response: {text[:200]}")
    return parsed


def parse_response(response: LLMResponse) -> dict[str, Any]:
    """Turn a raw response into a JSON object, classifying failures.

    Raises:
        ContentBlockedError: the model refused.
        EmptyResponseError: no text came back.
        MalformedResponseError: text is not a JSON object.
    """
    if response.blocked_reason:
        raise ContentBlockedError(response.blocked_reason)
    if response.text is None:
        raise EmptyResponseError("Empty response")
    if not response.text.strip():
        raise EmptyResponseError("Empty response text")
    return parse_json_from_text(response.text)


class OllamaLLMClient(LLMClientInterface):
    """Ollama chat client in structured-output mode."""

    def __init__(
        self,
        model: str = "llama3.1:8b",
        host: str = "http://localhost:11434",
        timeout: float = 300.0,
        temperature: float = 0.1,
    ):
        self.model = model
        self.host = host
        self.timeout = timeout
        self.temperature = temperature
        self._client = ollama.Client(host=host, timeout=timeout)

    async def complete(self, request: ExtractionRequest) -> LLMResponse:
        def _chat():
            return self._client.chat(
                model=request.model or self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": request.prompt},
                ],
                format=request.response_schema or "json",
                options={"temperature": self.temperature},
            )

        try:
            response = await asyncio.wait_for(asyncio.to_thread(_chat), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LLMTimeoutError(f"Ollama {request.task} request timed out after {self.timeout}s")
        except ollama.ResponseError as e:
            if e.status_code == 429:
                raise RateLimitError(f"Ollama rate limit: {e.error}") from e
            raise

        message = response["message"]
        return LLMResponse(text=message["content"] if message else None)

"""Extraction-service adapter: prompts, retries and response validation.

One adapter call is one task for one segment (or one document-level pass).
Each attempt renders the prompt, sends an ``ExtractionRequest`` through the
LLM client, then parses and validates the answer. Blocked, empty, malformed
and invalid answers, rate limits and timeouts are all transient: the call is
retried with the configured backoff (by default 3 attempts, waiting 1 s then
2 s). When attempts run out, ``ExtractionFailedError`` aborts the stage; the
stage's checkpoint from the previous stage is untouched so the next run
resumes there.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from storyschema.edge import CausalEdge, StructuralEdge, parse_edge
from storyschema.extraction import (
    EntityExtractionResponse,
    HigherOrderResponse,
    RawRelationship,
    RelationshipResponse,
)

from storygraph.config import PipelineConfig
from storygraph.errors import ExtractionFailedError, ResponseValidationError, TransientExtractionError

from .interfaces import (
    CharacterSummary,
    EntityContext,
    EventSummary,
    ExtractionServiceInterface,
    RegistryEntry,
    ThreadCandidate,
)
from .llm_client import ExtractionRequest, LLMClientInterface, parse_response
from .prompts import (
    ANALYZE_HIGHER_ORDER,
    EXTRACT_CROSS_SEGMENT_RELATIONSHIPS,
    EXTRACT_ENTITIES,
    EXTRACT_RELATIONSHIPS,
    PromptDefinition,
)

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def _validate_entity_response(response: EntityExtractionResponse) -> None:
    names = {e.name for e in response.entities}
    if len(names) != len(response.entities):
        raise ResponseValidationError("Duplicate entity names in one segment")
    for facet in response.facets:
        if facet.entity_name not in names:
            raise ResponseValidationError(f"Facet references unknown entity {facet.entity_name!r}")
    for mention in response.mentions:
        if mention.entity_name not in names:
            raise ResponseValidationError(f"Mention references unknown entity {mention.entity_name!r}")


def _convert_edges(
    raw: Sequence[RawRelationship],
    allowed_ids: set[str],
) -> list[CausalEdge | StructuralEdge]:
    edges: list[CausalEdge | StructuralEdge] = []
    for rel in raw:
        for endpoint in (rel.from_id, rel.to_id):
            if endpoint not in allowed_ids:
                raise ResponseValidationError(f"Relationship references unknown id {endpoint!r}")
        try:
            edges.append(parse_edge(rel.model_dump(by_alias=True)))
        except ValidationError as e:
            raise ResponseValidationError(f"Invalid relationship {rel.edge_type}: {e.errors()[0]['msg']}") from e
    return edges


class ExtractionAdapter(ExtractionServiceInterface):
    """Implements the extraction service over an LLM client.

    Args:
        client: The LLM client.
        config: Retry envelope and model name.
        sleep: Awaitable used between attempts; tests pass a no-op.
    """

    def __init__(
        self,
        client: LLMClientInterface,
        config: PipelineConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config or PipelineConfig()
        self.sleep = sleep

    async def _call(
        self,
        task: str,
        prompt: PromptDefinition,
        response_model: type[ResponseT],
        payload: dict[str, Any],
        validate: Callable[[ResponseT], Any] | None = None,
    ) -> Any:
        request = ExtractionRequest(
            task=task,
            model=self.config.llm.model or prompt.model,
            schema=response_model.model_json_schema(by_alias=True),
            prompt=prompt.build(**payload),
        )
        retry = self.config.retry
        for attempt in range(retry.max_attempts):
            try:
                data = parse_response(await self.client.complete(request))
                try:
                    result = response_model.model_validate(data)
                except ValidationError as e:
                    raise ResponseValidationError(f"{task}: {e.error_count()} validation errors") from e
                return validate(result) if validate is not None else result
            except TransientExtractionError as e:
                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    task,
                    attempt + 1,
                    retry.max_attempts,
                    e,
                )
                if attempt == retry.max_attempts - 1:
                    raise ExtractionFailedError(task, retry.max_attempts) from e
                await self.sleep(retry.delay_for(attempt))
        raise ExtractionFailedError(task, retry.max_attempts)

    async def extract_entities(
        self,
        segment_text: str,
        segment_index: int,
        total_segments: int,
        registry: Sequence[RegistryEntry],
        previous_segment_text: str | None = None,
    ) -> EntityExtractionResponse:
        def validate(response: EntityExtractionResponse) -> EntityExtractionResponse:
            _validate_entity_response(response)
            return response

        return await self._call(
            "extract_entities",
            EXTRACT_ENTITIES,
            EntityExtractionResponse,
            {
                "segment_text": segment_text,
                "segment_index": segment_index,
                "total_segments": total_segments,
                "registry": list(registry),
                "previous_segment_text": previous_segment_text,
            },
            validate,
        )

    async def extract_relationships(
        self,
        segment_text: str,
        segment_index: int,
        entities: Sequence[EntityContext],
    ) -> list[CausalEdge | StructuralEdge]:
        allowed = {e.id for e in entities}
        return await self._call(
            "extract_relationships",
            EXTRACT_RELATIONSHIPS,
            RelationshipResponse,
            {"segment_text": segment_text, "segment_index": segment_index, "entities": list(entities)},
            lambda response: _convert_edges(response.relationships, allowed),
        )

    async def extract_cross_segment_relationships(
        self,
        entities: Sequence[EntityContext],
        existing_edges: Sequence[CausalEdge | StructuralEdge],
        document_summary: str | None = None,
    ) -> list[CausalEdge | StructuralEdge]:
        allowed = {e.id for e in entities}
        known = {e.key for e in existing_edges}

        def validate(response: RelationshipResponse) -> list[CausalEdge | StructuralEdge]:
            return [e for e in _convert_edges(response.relationships, allowed) if e.key not in known]

        return await self._call(
            "extract_cross_segment_relationships",
            EXTRACT_CROSS_SEGMENT_RELATIONSHIPS,
            RelationshipResponse,
            {
                "entities": list(entities),
                "existing_relationships": list(existing_edges),
                "document_summary": document_summary,
            },
            validate,
        )

    async def analyze_higher_order(
        self,
        events: Sequence[EventSummary],
        characters: Sequence[CharacterSummary],
        thread_candidates: Sequence[ThreadCandidate],
        document_summary: str | None = None,
    ) -> HigherOrderResponse:
        event_ids = {e.id for e in events}
        character_ids = {c.id for c in characters}

        def validate(response: HigherOrderResponse) -> HigherOrderResponse:
            for thread in response.narrative_threads:
                unknown = [i for i in thread.event_ids if i not in event_ids]
                if unknown:
                    raise ResponseValidationError(f"Thread {thread.name!r} references unknown events {unknown}")
            seen: set[tuple[str, int]] = set()
            for phase in response.arc_phases:
                if phase.character_id not in character_ids:
                    raise ResponseValidationError(f"Arc phase references unknown character {phase.character_id!r}")
                if phase.trigger_event_id is not None and phase.trigger_event_id not in event_ids:
                    raise ResponseValidationError(f"Arc phase references unknown event {phase.trigger_event_id!r}")
                key = (phase.character_id, phase.phase_index)
                if key in seen:
                    raise ResponseValidationError(f"Duplicate arc phase {key}")
                seen.add(key)
            return response

        return await self._call(
            "analyze_higher_order",
            ANALYZE_HIGHER_ORDER,
            HigherOrderResponse,
            {
                "events": list(events),
                "characters": list(characters),
                "thread_candidates": list(thread_candidates),
                "document_summary": document_summary,
            },
            validate,
        )

"""Prompt definitions for the extraction tasks.

Each task has a versioned ``PromptDefinition`` whose ``build`` renders the
prompt from keyword arguments. Entities are always referred to by id in
relationship and higher-order prompts; entity extraction refers to known
entities by registry index.
"""

from typing import Any, Callable, Sequence

from pydantic import BaseModel, ConfigDict


class PromptDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    version: int
    model: str
    description: str
    build: Callable[..., str]


EDGE_TYPE_GUIDE = """EDGE TYPES:
**Causal (MUST include strength 0-1):**
- CAUSES: A directly causes B
- ENABLES: A makes B possible but doesn't guarantee it
- PREVENTS: A blocks B from occurring
**Temporal:**
- HAPPENS_BEFORE: Only for non-sequential time jumps (flashbacks)
**Structural/Relational:**
- PARTICIPATES_IN: Agent involved in event
- LOCATED_AT: Entity exists/occurs at location
- PART_OF: Component of containing entity
- MEMBER_OF: Belongs to group while retaining identity
- POSSESSES: Ownership or control
- CONNECTED_TO: Social/professional connection between agents
- OPPOSES: Conflict, antagonism, opposition
- ABOUT: Entity relates to abstract concept/theme
- RELATED_TO: Fallback (use sparingly)"""

RELATIONSHIP_FORMAT = """OUTPUT FORMAT:
```json
{
  "relationships": [
    {"fromId": "entity-id-1", "toId": "entity-id-2", "edgeType": "EDGE_TYPE",
     "description": "brief description", "strength": 0.8}
  ]
}
```"""


def format_registry(entries: Sequence[Any]) -> str:
    """Render registry entries as ``[idx] TYPE: "name"`` blocks."""
    if not entries:
        return "No existing entities yet."
    lines: list[str] = []
    for e in entries:
        lines.append(f'[{e.registry_index}] {e.type.value.upper()}: "{e.name}"')
        if e.aliases:
            lines.append(f"    aliases: {', '.join(e.aliases)}")
        if e.key_facets:
            lines.append(f"    facets: {'; '.join(e.key_facets)}")
    return "\n".join(lines)


def _build_entity_prompt(
    segment_text: str,
    segment_index: int,
    total_segments: int,
    registry: Sequence[Any] = (),
    previous_segment_text: str | None = None,
) -> str:
    parts = [
        "You are extracting entities from a narrative text segment. Your goals:",
        "1. Extract ALL entities (characters, locations, events, concepts, objects)",
        "2. Identify which extracted entities match known ones in the registry",
        "3. Capture facets, including inferred characteristics",
        "",
    ]
    if registry:
        parts += [
            "## ENTITY REGISTRY (known entities from previous segments)",
            format_registry(registry),
            "",
            "For EVERY entity you extract, check whether it is one of these. The same entity",
            'may appear under titles, epithets or nicknames ("the Count" = "Count Dracula").',
            "When you find a match, set existingMatch with the registryIndex.",
            "When uncertain but suspicious, add an entry to mergeSignals.",
            "",
        ]
    if previous_segment_text:
        parts += [
            "## PREVIOUS SEGMENT (read-only context, do NOT extract from this)",
            '"""',
            previous_segment_text,
            '"""',
            "",
        ]
    parts += [
        f"## CURRENT SEGMENT {segment_index + 1} OF {total_segments} (extract from this)",
        '"""',
        segment_text,
        '"""',
        "",
        "## OUTPUT FORMAT",
        "```json",
        "{",
        '  "entities": [{"name": "Entity Name", "type": "character|location|event|concept|other",',
        '                "documentOrder": 1,',
        '                "existingMatch": {"registryIndex": 0, "confidence": "high|medium|low", "reason": "why"}}],',
        '  "facets": [{"entityName": "Entity Name", "facetType": "name|appearance|trait|state", "content": "facet"}],',
        '  "mentions": [{"entityName": "Entity Name", "text": "exact verbatim quote"}],',
        '  "mergeSignals": [{"extractedEntityName": "the driver", "registryIndex": 3,',
        '                    "confidence": "medium", "evidence": "same place, same description"}]',
        "}",
        "```",
        "",
        "## RULES",
        "1. Extract ONLY from the CURRENT SEGMENT text",
        "2. Facets are 3-15 words; state facets are TEMPORARY conditions only",
        "3. Mentions must be EXACT VERBATIM quotes from the current segment",
        "4. For events, use documentOrder to indicate narrative sequence",
        "5. Do NOT extract relationships",
        "6. Omit existingMatch when nothing in the registry matches",
    ]
    return "\n".join(parts)


def _build_relationship_prompt(segment_text: str, segment_index: int, entities: Sequence[Any]) -> str:
    entity_lines = "\n".join(
        f'[{e.id}] {e.type.upper()}: "{e.name}" - {", ".join(e.key_facets) or "no facets"}' for e in entities
    )
    return f"""Extract relationships between entities in this segment.

SEGMENT {segment_index + 1}:
\"\"\"
{segment_text}
\"\"\"

RESOLVED ENTITIES IN THIS SEGMENT:
{entity_lines}

{RELATIONSHIP_FORMAT}

{EDGE_TYPE_GUIDE}

RULES:
1. Use entity IDs from the list above, not names
2. Only extract relationships EVIDENCED in this segment text
3. For causal edges (CAUSES, ENABLES, PREVENTS), include strength 0-1
4. Prefer specific edge types over RELATED_TO
5. Description should be 3-10 words"""


def _build_cross_segment_prompt(
    entities: Sequence[Any],
    existing_relationships: Sequence[Any] = (),
    document_summary: str | None = None,
) -> str:
    entity_blocks = "\n\n".join(
        f'[{e.id}] {e.type.upper()}: "{e.name}"\n'
        f"    Segments: {', '.join(e.segment_ids)}\n"
        f"    Facets: {', '.join(e.key_facets) or 'none'}"
        for e in entities
    )
    sections = ["Extract relationships between entities that span DIFFERENT segments.", ""]
    if document_summary:
        sections += ["DOCUMENT OVERVIEW:", '"""', document_summary, '"""', ""]
    sections += ["ALL RESOLVED ENTITIES:", entity_blocks, ""]
    if existing_relationships:
        sections.append("EXISTING RELATIONSHIPS (already extracted, do not repeat):")
        sections += [f"  {r.from_id} --[{r.edge_type.value}]--> {r.to_id}" for r in existing_relationships]
        sections.append("")
    sections += [
        RELATIONSHIP_FORMAT,
        "",
        EDGE_TYPE_GUIDE,
        "",
        "RULES:",
        "1. Only add relationships NOT in the existing list",
        "2. Focus on connections across segments: recurring characters, events with later effects",
        "3. Use entity IDs, not names",
    ]
    return "\n".join(sections)


def _build_higher_order_prompt(
    events: Sequence[Any],
    characters: Sequence[Any],
    thread_candidates: Sequence[Any],
    document_summary: str | None = None,
) -> str:
    event_lines = []
    for e in events:
        line = f'[{e.id}] #{e.document_order}: "{e.name}"\n  Characters: {", ".join(e.connected_character_ids) or "none"}'
        if e.causal_edges:
            causal = ", ".join(f"{c.edge_type.value}({c.strength}) -> {c.target_id}" for c in e.causal_edges)
            line += f"\n  Causal: {causal}"
        event_lines.append(line)
    character_blocks = []
    for c in characters:
        states = " | ".join(f"Seg {idx}: {', '.join(s)}" for idx, s in c.state_facets_by_segment)
        character_blocks.append(
            f'[{c.id}] "{c.name}"\n'
            f"  Events: {', '.join(c.participates_in_event_ids) or 'none'}\n"
            f"  States: {states or 'no state changes'}"
        )
    sections = ["Analyze the narrative structure of this document.", ""]
    if document_summary:
        sections += ["DOCUMENT OVERVIEW:", '"""', document_summary, '"""', ""]
    sections += ["EVENTS (in document order):", "\n".join(event_lines), "", "CHARACTERS:", "\n\n".join(character_blocks), ""]
    if thread_candidates:
        sections.append("THREAD CANDIDATES (connected components of the causal graph):")
        sections += [
            f"  Candidate {i + 1}: Events [{', '.join(t.event_ids)}], Characters [{', '.join(t.character_ids)}]"
            for i, t in enumerate(thread_candidates)
        ]
        sections.append("")
    sections += [
        "OUTPUT:",
        "```json",
        "{",
        '  "narrativeThreads": [{"name": "Short name", "isPrimary": true, "eventIds": ["ev-1"], "description": "..."}],',
        '  "arcPhases": [{"characterId": "char-1", "phaseIndex": 0, "phaseName": "naive",',
        '                 "arcType": "transformation|growth|fall|revelation|static",',
        '                 "triggerEventId": null, "stateFacets": ["trusting"]}]',
        "}",
        "```",
        "",
        "RULES:",
        "1. Exactly one thread is primary; use event IDs, not names",
        "2. phaseIndex starts at 0 and increments per phase",
        "3. triggerEventId is the event causing the transition TO this phase (null for the first)",
        "4. stateFacets should reuse the character's state facets where possible",
        "5. arcType is the same for every phase of one character",
    ]
    return "\n".join(sections)


EXTRACT_ENTITIES = PromptDefinition(
    id="extract-entities",
    version=2,
    model="llama3.1:8b",
    description="Extract entities, facets and mentions with registry-based match detection",
    build=_build_entity_prompt,
)

EXTRACT_RELATIONSHIPS = PromptDefinition(
    id="extract-relationships",
    version=1,
    model="llama3.1:8b",
    description="Extract relationships between resolved entities of one segment",
    build=_build_relationship_prompt,
)

EXTRACT_CROSS_SEGMENT_RELATIONSHIPS = PromptDefinition(
    id="extract-cross-segment-relationships",
    version=1,
    model="llama3.1:8b",
    description="Extract relationships between entities in different segments",
    build=_build_cross_segment_prompt,
)

ANALYZE_HIGHER_ORDER = PromptDefinition(
    id="analyze-higher-order",
    version=1,
    model="llama3.1:8b",
    description="Name narrative threads and segment character arcs into phases",
    build=_build_higher_order_prompt,
)

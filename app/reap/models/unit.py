"""Vetted unit model.

A VettedUnit bundles everything known about one plan node once it has
been fetched, audited and test-installed in a sandbox.
"""

from dataclasses import dataclass

from reap.models.audit import AuditResult
from reap.models.plan import PlanNode
from reap.models.record import FetchedArtifact
from reap.models.sandbox import SandboxRun


@dataclass(frozen=True, slots=True)
class VettedUnit:
    """A plan node ready to be committed to the host.

    Attributes:
        node: The plan node.
        artifact: Fetched files and build outputs.
        audit: Audit result for the node's record.
        run: Successful sandbox run for the node's record.
    """

    node: PlanNode
    artifact: FetchedArtifact
    audit: AuditResult
    run: SandboxRun

    @property
    def name(self) -> str:
        """Package name of the unit."""
        return self.node.name

    @property
    def key(self) -> str:
        """Plan node key of the unit."""
        return self.node.key

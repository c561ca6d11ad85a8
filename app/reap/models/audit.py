"""Audit result models.

Each audit step contributes a verdict component; the overall verdict is
the most severe of them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from reap.models.record import PackageRecord


class Verdict(str, Enum):
    """Audit verdict, ordered by severity."""

    TRUSTED = "trusted"
    WARN = "warn"
    BLOCKED = "blocked"

    @property
    def severity(self) -> int:
        """Numeric severity used for combining verdicts."""
        return _SEVERITY[self]

    @classmethod
    def worst(cls, *verdicts: "Verdict") -> "Verdict":
        """Return the most severe of the given verdicts (TRUSTED if none)."""
        if not verdicts:
            return cls.TRUSTED
        return max(verdicts, key=lambda v: v.severity)


_SEVERITY = {Verdict.TRUSTED: 0, Verdict.WARN: 1, Verdict.BLOCKED: 2}


class SignatureStatus(str, Enum):
    """Outcome of the signature check."""

    VALID = "valid"
    MISSING = "missing"
    INVALID = "invalid"
    UNTRUSTED = "untrusted"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not_applicable"


class DiffStatus(str, Enum):
    """Outcome of comparing a recipe with the last audited version."""

    FIRST_SEEN = "first_seen"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    ACCEPTED = "accepted"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True, slots=True)
class LintFinding:
    """A single static-lint hit in a recipe.

    Attributes:
        rule: Identifier of the rule that matched.
        severity: Verdict this finding contributes.
        line: 1-based line number in the recipe.
        message: Human-readable explanation.
        excerpt: The offending line, stripped.
    """

    rule: str
    severity: Verdict
    line: int
    message: str
    excerpt: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "line": self.line,
            "message": self.message,
            "excerpt": self.excerpt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LintFinding":
        """Deserialize from dictionary."""
        return cls(
            rule=data["rule"],
            severity=Verdict(data["severity"]),
            line=data["line"],
            message=data["message"],
            excerpt=data.get("excerpt", ""),
        )


@dataclass(frozen=True, slots=True)
class AuditResult:
    """Verdict for one package record in one audit run.

    Attributes:
        record: The audited record.
        verdict: Overall verdict (most severe component).
        signature: Signature check outcome.
        signature_verdict: Verdict contributed by the signature check.
        diff_status: Recipe diff outcome.
        diff_summary: Unified diff, or full recipe content when first seen.
        diff_verdict: Verdict contributed by the recipe diff.
        findings: Static-lint findings.
        recipe_hash: sha256 of the audited recipe (cache key component).
        signer: Fingerprint of the signer when the signature is valid.
    """

    record: PackageRecord
    verdict: Verdict
    signature: SignatureStatus
    signature_verdict: Verdict = Verdict.TRUSTED
    diff_status: DiffStatus = DiffStatus.NOT_APPLICABLE
    diff_summary: str = ""
    diff_verdict: Verdict = Verdict.TRUSTED
    findings: tuple[LintFinding, ...] = field(default=())
    recipe_hash: str | None = None
    signer: str | None = None

    @property
    def blocked(self) -> bool:
        """Check if the verdict blocks installation."""
        return self.verdict == Verdict.BLOCKED

    @property
    def lint_verdict(self) -> Verdict:
        """Verdict contributed by the lint findings."""
        return Verdict.worst(*(f.severity for f in self.findings))

    @property
    def blocked_reasons(self) -> list[str]:
        """Explain which components block this record."""
        reasons: list[str] = []
        if self.signature_verdict == Verdict.BLOCKED:
            reasons.append(f"signature {self.signature.value}")
        if self.diff_verdict == Verdict.BLOCKED:
            reasons.append(f"recipe {self.diff_status.value}")
        reasons.extend(
            f"lint {f.rule} (line {f.line})" for f in self.findings if f.severity == Verdict.BLOCKED
        )
        return reasons

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "record": self.record.to_dict(),
            "verdict": self.verdict.value,
            "signature": self.signature.value,
            "signature_verdict": self.signature_verdict.value,
            "diff_status": self.diff_status.value,
            "diff_summary": self.diff_summary,
            "diff_verdict": self.diff_verdict.value,
            "findings": [f.to_dict() for f in self.findings],
            "recipe_hash": self.recipe_hash,
            "signer": self.signer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditResult":
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If enum values are invalid.
        """
        return cls(
            record=PackageRecord.from_dict(data["record"]),
            verdict=Verdict(data["verdict"]),
            signature=SignatureStatus(data["signature"]),
            signature_verdict=Verdict(data.get("signature_verdict", "trusted")),
            diff_status=DiffStatus(data.get("diff_status", "not_applicable")),
            diff_summary=data.get("diff_summary", ""),
            diff_verdict=Verdict(data.get("diff_verdict", "trusted")),
            findings=tuple(LintFinding.from_dict(f) for f in data.get("findings", [])),
            recipe_hash=data.get("recipe_hash"),
            signer=data.get("signer"),
        )

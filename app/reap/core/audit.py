"""Trust and audit pipeline.

Every fetched record goes through three independent checks:

1. Signature: detached signature verified with GnuPG against the
   trusted keys (only for packages built from a recipe; repository
   and Flatpak packages are verified by their own tooling).
2. Recipe diff: the recipe is compared with the last version that was
   committed. New or changed recipes need explicit acceptance.
3. Static lint: pattern rules over the recipe text.

The overall verdict is the most severe component verdict. Signature and
lint results are cached by recipe, signature and policy content.
"""

import difflib
import hashlib
import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from reap.core.config import TrustConfig
from reap.models.audit import AuditResult, DiffStatus, LintFinding, SignatureStatus, Verdict
from reap.models.record import FetchedArtifact, PackageRecord
from reap.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)

# Functions whose bodies run while the package builds
_BUILD_FUNCTION_RE = re.compile(r"^\s*(?:prepare|build|check|package(?:_[\w-]+)?)\s*\(\)")


@dataclass(frozen=True, slots=True)
class LintRule:
    """A pattern-based recipe check.

    Attributes:
        id: Rule identifier.
        severity: Verdict contributed on a match.
        pattern: Regex matched against each non-comment line.
        message: Explanation shown to the user.
        scope: ``any`` for every line, ``build`` for lines inside build functions.
        unless: Optional regex that suppresses a match on the same line.
    """

    id: str
    severity: Verdict
    pattern: re.Pattern[str]
    message: str
    scope: Literal["any", "build"] = "any"
    unless: re.Pattern[str] | None = None


DEFAULT_RULES: tuple[LintRule, ...] = (
    LintRule(
        id="curl-pipe-shell",
        severity=Verdict.BLOCKED,
        pattern=re.compile(r"\b(?:curl|wget)\b[^|\n]*\|\s*(?:sudo\s+)?(?:ba|z|da)?sh\b"),
        message="downloads and executes a remote script",
    ),
    LintRule(
        id="rm-root",
        severity=Verdict.BLOCKED,
        pattern=re.compile(
            r"\brm\s+-[a-zA-Z]*[rR][a-zA-Z]*\s+(?:--no-preserve-root\s+)?/(?:\*|\s|$)"
        ),
        message="recursively removes the root filesystem",
    ),
    LintRule(
        id="system-write",
        severity=Verdict.BLOCKED,
        pattern=re.compile(
            r"(?:>{1,2}\s*|\b(?:tee|cp|mv|install|ln)\b[^\n]*\s)"
            r"/(?:etc|usr|bin|sbin|lib|lib64|boot|var|opt)/"
        ),
        message="writes to a system path outside $pkgdir",
        unless=re.compile(r"\$\{?(?:pkgdir|srcdir)\}?"),
    ),
    LintRule(
        id="sudo",
        severity=Verdict.BLOCKED,
        pattern=re.compile(r"\bsudo\b"),
        message="escalates privileges with sudo",
    ),
    LintRule(
        id="base64-exec",
        severity=Verdict.BLOCKED,
        pattern=re.compile(r"base64\s+(?:-d|--decode)\b[^\n]*\|\s*(?:ba|z)?sh\b"),
        message="executes base64-decoded content",
    ),
    LintRule(
        id="network-in-build",
        severity=Verdict.WARN,
        pattern=re.compile(r"\b(?:curl|wget|git\s+clone|pip\s+install|npm\s+install)\b"),
        message="fetches from the network while building",
        scope="build",
    ),
    LintRule(
        id="eval",
        severity=Verdict.WARN,
        pattern=re.compile(r"\beval\b"),
        message="evaluates dynamically built code",
    ),
    LintRule(
        id="chmod-777",
        severity=Verdict.WARN,
        pattern=re.compile(r"\bchmod\s+(?:-R\s+)?0?777\b"),
        message="makes files world-writable",
    ),
)


class RecipeLinter:
    """Applies lint rules line by line."""

    def __init__(self, rules: tuple[LintRule, ...] = DEFAULT_RULES) -> None:
        self.rules = rules

    def lint(self, text: str) -> tuple[LintFinding, ...]:
        """Return every rule match in the recipe, in line order."""
        findings: list[LintFinding] = []
        depth = 0
        in_build = False
        for number, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if _BUILD_FUNCTION_RE.match(raw):
                in_build, depth = True, 0
            if in_build:
                depth += raw.count("{") - raw.count("}")

            if line and not line.startswith("#"):
                for rule in self.rules:
                    if rule.scope == "build" and not in_build:
                        continue
                    if not rule.pattern.search(line):
                        continue
                    if rule.unless is not None and rule.unless.search(line):
                        continue
                    findings.append(
                        LintFinding(
                            rule=rule.id,
                            severity=rule.severity,
                            line=number,
                            message=rule.message,
                            excerpt=line[:120],
                        )
                    )

            if in_build and depth <= 0 and "}" in raw:
                in_build = False
        return tuple(findings)


class SignatureVerifier:
    """Verifies detached signatures with GnuPG."""

    def __init__(self, keyring: str | None = None, trusted_keys: list[str] | None = None) -> None:
        self.keyring = keyring
        self.trusted_keys = frozenset(trusted_keys or [])

    def verify(self, signature: Path, signed: Path) -> tuple[SignatureStatus, str | None]:
        """Verify ``signature`` over ``signed``.

        Returns:
            Tuple of (status, signer fingerprint or None).
        """
        if not command_exists("gpg"):
            logger.warning("gpg not found; cannot verify %s", signature)
            return SignatureStatus.INVALID, None

        args = ["gpg", "--batch", "--status-fd", "1"]
        if self.keyring:
            args += ["--no-default-keyring", "--keyring", self.keyring]
        args += ["--verify", str(signature), str(signed)]
        try:
            result = run_command(args, timeout=60.0)
        except subprocess.TimeoutExpired:
            logger.warning("gpg timed out verifying %s", signature)
            return SignatureStatus.INVALID, None
        return self.parse_status(result.stdout)

    def parse_status(self, output: str) -> tuple[SignatureStatus, str | None]:
        """Interpret ``--status-fd`` output."""
        tokens = [line.split() for line in output.splitlines() if line.startswith("[GNUPG:]")]
        for parts in tokens:
            if len(parts) >= 3 and parts[1] == "VALIDSIG":
                fingerprint = parts[2].upper()
                if fingerprint in self.trusted_keys:
                    return SignatureStatus.VALID, fingerprint
                # Without a pinned key list only a dedicated keyring vouches for signers
                if not self.trusted_keys and self.keyring:
                    return SignatureStatus.VALID, fingerprint
                return SignatureStatus.UNTRUSTED, fingerprint
        if any(len(parts) >= 2 and parts[1] == "NO_PUBKEY" for parts in tokens):
            return SignatureStatus.UNTRUSTED, None
        return SignatureStatus.INVALID, None


class RecipeStore:
    """Last-known-good recipes, one file per ``<origin>/<name>``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path(self, record: PackageRecord) -> Path:
        """Storage path of a record's recipe."""
        return self.root / record.origin.value / record.name

    def load(self, record: PackageRecord) -> str | None:
        """Last accepted recipe text, or None if never accepted."""
        path = self.path(record)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def save(self, record: PackageRecord, text: str) -> None:
        """Store a recipe as last-known-good."""
        path = self.path(record)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


class AuditCache:
    """Signature and lint results keyed by content hash."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def get(self, key: str) -> dict[str, Any] | None:
        """Load a cached entry."""
        path = self.root / f"{key}.json"
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable audit cache entry %s: %s", path.name, e)
            return None

    def put(self, key: str, entry: dict[str, Any]) -> None:
        """Store an entry."""
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / f"{key}.json").write_text(json.dumps(entry), encoding="utf-8")


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class AuditPipeline:
    """Runs the signature, diff and lint checks for fetched artifacts."""

    def __init__(
        self,
        trust: TrustConfig,
        store: RecipeStore,
        cache: AuditCache | None = None,
        verifier: SignatureVerifier | None = None,
        linter: RecipeLinter | None = None,
    ) -> None:
        self.trust = trust
        self.store = store
        self.cache = cache
        self.verifier = verifier or SignatureVerifier(trust.keyring, trust.trusted_keys)
        self.linter = linter or RecipeLinter()

    def audit(self, artifact: FetchedArtifact, accept_changes: bool = False) -> AuditResult:
        """Audit one fetched artifact.

        Args:
            artifact: The fetched files to audit.
            accept_changes: Accept a new or changed recipe for this run.

        Returns:
            AuditResult with the overall and component verdicts.
        """
        record = artifact.record
        recipe = artifact.recipe_text()
        recipe_hash = _sha256(recipe.encode()) if recipe is not None else None

        cache_key = self._cache_key(artifact, recipe)
        cached = self.cache.get(cache_key) if self.cache is not None else None
        if cached is not None:
            logger.debug("Audit cache hit for %s", record.key)
            signature = SignatureStatus(cached["signature"])
            signer = cached.get("signer")
            findings = tuple(LintFinding.from_dict(f) for f in cached.get("findings", []))
        else:
            signature, signer = self._check_signature(artifact)
            findings = self._lint(recipe)
            if self.cache is not None:
                self.cache.put(
                    cache_key,
                    {
                        "signature": signature.value,
                        "signer": signer,
                        "findings": [f.to_dict() for f in findings],
                    },
                )

        diff_status, diff_summary = self._diff(record, recipe, accept_changes)
        signature_verdict = self._signature_verdict(signature)
        diff_verdict = (
            Verdict.WARN
            if diff_status in (DiffStatus.FIRST_SEEN, DiffStatus.CHANGED)
            else Verdict.TRUSTED
        )
        verdict = Verdict.worst(
            signature_verdict, diff_verdict, *(finding.severity for finding in findings)
        )

        result = AuditResult(
            record=record,
            verdict=verdict,
            signature=signature,
            signature_verdict=signature_verdict,
            diff_status=diff_status,
            diff_summary=diff_summary,
            diff_verdict=diff_verdict,
            findings=findings,
            recipe_hash=recipe_hash,
            signer=signer,
        )
        log = logger.warning if result.blocked else logger.info
        log("Audit %s: %s", record.key, verdict.value)
        return result

    def accept(self, artifact: FetchedArtifact) -> None:
        """Record the artifact's recipe as last-known-good."""
        recipe = artifact.recipe_text()
        if recipe is not None:
            self.store.save(artifact.record, recipe)

    def _cache_key(self, artifact: FetchedArtifact, recipe: str | None) -> str:
        signature = b""
        if artifact.signature_path is not None and artifact.signature_path.exists():
            signature = artifact.signature_path.read_bytes()
        policy = json.dumps(self.trust.model_dump(mode="json"), sort_keys=True)
        material = b"\0".join(
            [
                artifact.record.key.encode(),
                (recipe or "").encode(),
                signature,
                policy.encode(),
            ]
        )
        return _sha256(material)

    def _check_signature(self, artifact: FetchedArtifact) -> tuple[SignatureStatus, str | None]:
        if not artifact.record.origin.builds_from_recipe:
            return SignatureStatus.NOT_APPLICABLE, None
        if self.trust.skip_signature:
            return SignatureStatus.SKIPPED, None
        signed = artifact.signed_path
        if artifact.signature_path is None or signed is None:
            return SignatureStatus.MISSING, None
        return self.verifier.verify(artifact.signature_path, signed)

    def _signature_verdict(self, status: SignatureStatus) -> Verdict:
        if status in (
            SignatureStatus.VALID,
            SignatureStatus.SKIPPED,
            SignatureStatus.NOT_APPLICABLE,
        ):
            return Verdict.TRUSTED
        return Verdict.WARN if self.trust.allow_unsigned else Verdict.BLOCKED

    def _lint(self, recipe: str | None) -> tuple[LintFinding, ...]:
        if recipe is None or self.trust.skip_lint:
            return ()
        return self.linter.lint(recipe)

    def _diff(
        self, record: PackageRecord, recipe: str | None, accept_changes: bool
    ) -> tuple[DiffStatus, str]:
        if recipe is None:
            return DiffStatus.NOT_APPLICABLE, ""
        if self.trust.skip_diff:
            return DiffStatus.SKIPPED, ""

        previous = self.store.load(record)
        if previous is None:
            status = DiffStatus.ACCEPTED if accept_changes else DiffStatus.FIRST_SEEN
            return status, recipe
        if previous == recipe:
            return DiffStatus.UNCHANGED, ""

        summary = "".join(
            difflib.unified_diff(
                previous.splitlines(keepends=True),
                recipe.splitlines(keepends=True),
                fromfile=f"{record.name}/PKGBUILD (last accepted)",
                tofile=f"{record.name}/PKGBUILD",
            )
        )
        return (DiffStatus.ACCEPTED if accept_changes else DiffStatus.CHANGED), summary

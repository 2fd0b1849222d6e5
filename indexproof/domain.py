"""
Core Domain Objects for the IndexProof engine.

All domain objects are immutable once constructed. An artifact read from
disk never changes during a run; a stanza never changes once parsed.

Domain Objects:
    Artifact     — A local package file with known name/version/hash
    IndexSource  — One retrievable index blob (suite x component)
    IndexBlob    — The retrieved bytes and decoded text of an IndexSource
    Stanza       — One blank-line-delimited record of an index
    Matched      — An artifact attested by exactly one stanza
    Unmatched    — An explicit non-match with a classified reason
    ResultRecord — The flat, tabular form of one artifact's outcome
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union

from .evidence import NO_EVIDENCE, PartialEvidence


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class IndexProofError(Exception):
    """Base class for every error raised by the engine."""
    pass


class IndexUnavailable(IndexProofError):
    """Retrieval or decode of an index source failed. Never fatal."""

    def __init__(self, source: IndexSource, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source.label}: {reason}")


class SignatureInvalid(IndexProofError):
    """A suite's signed manifest failed authenticity verification."""

    def __init__(self, suite: str, reason: str):
        self.suite = suite
        self.reason = reason
        super().__init__(f"[{suite}] {reason}")


class MalformedStanza(IndexProofError):
    """
    A non-blank line inside an index could not be read as a field.

    The parser never raises this. It is handed to an optional callback
    so the offending line is reported and skipped.
    """

    def __init__(self, line_number: int, line: str):
        self.line_number = line_number
        self.line = line
        super().__init__(f"line {line_number}: {line[:80]!r}")


class ArtifactReadError(IndexProofError):
    """A file under scan could not be read as a package artifact."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class RunAbortedError(IndexProofError):
    """Total inability to proceed. The only run-aborting condition."""
    pass


# =============================================================================
# REASON CODES
# =============================================================================

class ReasonCode(Enum):
    """
    Closed set of reasons an artifact was not matched.

    Listed in precedence order (most security-relevant first):
    INDEX_UNAVAILABLE   — no index blob could be retrieved/decoded at all
    GATED_SUITE_SKIPPED — the trust gate excluded every suite that could
                          have been scanned
    HASH_MISMATCH       — name+version attested, content hash differs
    VERSION_NOT_FOUND   — name attested, never with this version
    NOT_FOUND           — name never attested
    """
    INDEX_UNAVAILABLE = "index_unavailable"
    GATED_SUITE_SKIPPED = "gated_suite_skipped"
    HASH_MISMATCH = "hash_mismatch"
    VERSION_NOT_FOUND = "version_not_found"
    NOT_FOUND = "not_found"


# =============================================================================
# ARTIFACT
# =============================================================================

@dataclass(frozen=True)
class Artifact:
    """
    A local package file under scan.

    The hash is always held in canonical lowercase hex.
    """
    name: str
    version: str
    architecture: str
    hash: str
    source_path: Path

    def __post_init__(self):
        if not self.name:
            raise ArtifactReadError(self.source_path, "name is required")
        if not self.version:
            raise ArtifactReadError(self.source_path, "version is required")
        if not self.hash:
            raise ArtifactReadError(self.source_path, "hash is required")
        object.__setattr__(self, "hash", self.hash.lower())
        object.__setattr__(self, "source_path", Path(self.source_path))

    @property
    def folder(self) -> str:
        return str(self.source_path.parent)

    @property
    def filename(self) -> str:
        return self.source_path.name


# =============================================================================
# INDEX SOURCE / BLOB
# =============================================================================

@dataclass(frozen=True)
class IndexSource:
    """One retrievable index blob. Iteration order across sources matters."""
    suite: str
    component: str
    origin_url: str = ""

    @property
    def label(self) -> str:
        """`suite/component`, as written into the result log."""
        return f"{self.suite}/{self.component}"

    @property
    def key(self) -> tuple[str, str]:
        return (self.suite, self.component)

    @property
    def audit_stem(self) -> str:
        """Deterministic file stem for audit copies of this source's index."""
        return f"Packages_{self.suite}_{self.component}"


@dataclass(frozen=True)
class IndexBlob:
    """A retrieved index: raw (compressed) bytes plus decoded text."""
    source: IndexSource
    raw: bytes
    text: str


# =============================================================================
# STANZA
# =============================================================================

@dataclass(frozen=True)
class StanzaSchema:
    """The three field keys of interest in a given index format."""
    name_key: str
    version_key: str
    hash_key: str

    @property
    def keys(self) -> tuple[str, str, str]:
        return (self.name_key, self.version_key, self.hash_key)


GENERIC_SCHEMA = StanzaSchema(name_key="Name", version_key="Version", hash_key="Hash")
DEBIAN_SCHEMA = StanzaSchema(name_key="Package", version_key="Version", hash_key="SHA256")


@dataclass(frozen=True)
class Stanza:
    """
    One record of an index.

    start_line is the 1-based line number of the record's first content
    line, never the separator before it.
    """
    start_line: int
    fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.start_line < 1:
            raise ValueError(f"start_line must be >= 1, got {self.start_line}")

    def get(self, key: str) -> Optional[str]:
        """Exact-key field lookup."""
        return self.fields.get(key)


# =============================================================================
# MATCH RESULT
# =============================================================================

@dataclass(frozen=True)
class Matched:
    """An artifact jointly attested by one stanza of one trusted source."""
    source: IndexSource
    stanza: Stanza
    blob: Optional[IndexBlob] = None

    @property
    def is_match(self) -> bool:
        return True


@dataclass(frozen=True)
class Unmatched:
    """
    An artifact that no trusted source attested.

    evidence and sources_scanned are kept so a later retry in the same run
    can keep folding evidence instead of starting over.
    """
    reason: ReasonCode
    evidence: PartialEvidence = NO_EVIDENCE
    sources_scanned: int = 0

    @property
    def is_match(self) -> bool:
        return False


MatchResult = Union[Matched, Unmatched]


# =============================================================================
# RESULT RECORD
# =============================================================================

RESULT_HEADER = (
    "folder",
    "filename",
    "package",
    "version",
    "architecture",
    "sha256",
    "match_found",
    "suite/component",
    "packages_txt_filename",
    "match_start_line",
    "reason",
)


@dataclass(frozen=True)
class ResultRecord:
    """Exactly one per artifact per run."""
    folder: str
    filename: str
    name: str
    version: str
    architecture: str
    hash: str
    match_found: bool
    suite_component: str = ""
    index_filename: str = ""
    start_line: Optional[int] = None
    reason: Optional[ReasonCode] = None

    @classmethod
    def from_result(cls, artifact: Artifact, result: MatchResult) -> ResultRecord:
        """Flatten an artifact and its outcome into a record."""
        base = dict(
            folder=artifact.folder,
            filename=artifact.filename,
            name=artifact.name,
            version=artifact.version,
            architecture=artifact.architecture,
            hash=artifact.hash,
        )
        if isinstance(result, Matched):
            return cls(
                **base,
                match_found=True,
                suite_component=result.source.label,
                index_filename=f"{result.source.audit_stem}.txt",
                start_line=result.stanza.start_line,
            )
        return cls(**base, match_found=False, reason=result.reason)

    def to_row(self) -> list[str]:
        """Column values in RESULT_HEADER order."""
        return [
            self.folder,
            self.filename,
            self.name,
            self.version,
            self.architecture,
            self.hash,
            "yes" if self.match_found else "no",
            self.suite_component,
            self.index_filename,
            "" if self.start_line is None else str(self.start_line),
            "" if self.reason is None else self.reason.value,
        ]

    def sort_key(self) -> tuple[str, str]:
        return (self.folder, self.filename)

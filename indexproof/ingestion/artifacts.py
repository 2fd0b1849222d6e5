"""
Artifact Reading for the IndexProof engine.

Turns local `.deb` files into Artifact objects.

A `.deb` is an `ar` archive whose `control.tar[.gz|.xz|.bz2|.zst]` member holds
a `control` file in the same stanza format as an index. The package's
name, version and architecture are read from that file with the stanza
parser; the hash is the SHA-256 of the whole file.
"""

from __future__ import annotations

import hashlib
import io
import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import zstandard

from ..config import ARTIFACT_GLOB
from ..domain import Artifact, ArtifactReadError
from .stanza import parse_stanzas


logger = logging.getLogger(__name__)


AR_MAGIC = b"!<arch>\n"
AR_HEADER_SIZE = 60
CONTROL_MEMBER_PREFIX = "control.tar"
ZSTD_SUFFIX = ".zst"
CONTROL_FIELDS = ("Package", "Version", "Architecture")

HASH_CHUNK_SIZE = 1024 * 1024


# =============================================================================
# HASHING
# =============================================================================

def sha256_file(path: Path) -> str:
    """Lowercase hex SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


# =============================================================================
# AR CONTAINER
# =============================================================================

@dataclass
class ArMember:
    """One member of an ar archive."""
    name: str
    data: bytes


def iter_ar_members(data: bytes, path: Path) -> Iterator[ArMember]:
    """
    Yield members of a (common/GNU) ar archive.

    Raises:
        ArtifactReadError: If the container is truncated or not ar
    """
    if not data.startswith(AR_MAGIC):
        raise ArtifactReadError(path, "not an ar archive")

    offset = len(AR_MAGIC)
    while offset + AR_HEADER_SIZE <= len(data):
        header = data[offset:offset + AR_HEADER_SIZE]
        if header[58:60] != b"`\n":
            raise ArtifactReadError(path, f"bad ar header at offset {offset}")

        name = header[0:16].decode("ascii", errors="replace").strip().rstrip("/")
        try:
            size = int(header[48:58].decode("ascii").strip())
        except ValueError:
            raise ArtifactReadError(path, f"bad ar member size at offset {offset}")

        start = offset + AR_HEADER_SIZE
        end = start + size
        if end > len(data):
            raise ArtifactReadError(path, f"truncated ar member {name!r}")

        yield ArMember(name=name, data=data[start:end])

        # Members are 2-byte aligned
        offset = end + (size % 2)


def control_archive_bytes(member: ArMember) -> bytes:
    """Tar bytes of a control member; `tarfile` opens gz, bz2 and xz itself."""
    if not member.name.endswith(ZSTD_SUFFIX):
        return member.data
    decompressor = zstandard.ZstdDecompressor()
    with decompressor.stream_reader(io.BytesIO(member.data), read_across_frames=True) as reader:
        return reader.read()


def read_control_text(path: Path) -> str:
    """Extract the text of the package's `control` file."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ArtifactReadError(path, f"cannot read file: {e}")

    for member in iter_ar_members(data, path):
        if not member.name.startswith(CONTROL_MEMBER_PREFIX):
            continue
        try:
            archive = control_archive_bytes(member)
            with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
                for info in tar.getmembers():
                    if info.isfile() and info.name.lstrip("./") == "control":
                        extracted = tar.extractfile(info)
                        if extracted is None:
                            break
                        return extracted.read().decode("utf-8", errors="replace")
        except (tarfile.TarError, zstandard.ZstdError, OSError, EOFError) as e:
            raise ArtifactReadError(path, f"unreadable {member.name}: {e}")
        raise ArtifactReadError(path, f"{member.name} has no control file")

    raise ArtifactReadError(path, "no control archive member")


# =============================================================================
# ARTIFACT CONSTRUCTION
# =============================================================================

def read_artifact(path: Path) -> Artifact:
    """
    Read one `.deb` into an Artifact.

    Raises:
        ArtifactReadError: If the file is unreadable or lacks control fields
    """
    path = Path(path)
    control = read_control_text(path)

    stanza = next(iter(parse_stanzas(control, keys=CONTROL_FIELDS)), None)
    if stanza is None:
        raise ArtifactReadError(path, "control file has no fields")

    name = stanza.get("Package")
    version = stanza.get("Version")
    if not name or not version:
        raise ArtifactReadError(path, "control file lacks Package or Version")

    try:
        digest = sha256_file(path)
    except OSError as e:
        raise ArtifactReadError(path, f"cannot hash file: {e}")

    return Artifact(
        name=name,
        version=version.strip("\r\n"),
        architecture=stanza.get("Architecture") or "",
        hash=digest,
        source_path=path,
    )


def discover_artifact_paths(root: Path, pattern: str = ARTIFACT_GLOB) -> list[Path]:
    """Every file under root matching pattern, in sorted order."""
    return sorted(p for p in Path(root).rglob(pattern) if p.is_file())


@dataclass
class ArtifactDiscovery:
    """Artifacts read from a directory, plus files that could not be read."""
    artifacts: list[Artifact]
    failures: list[ArtifactReadError]


def discover_artifacts(root: Path, pattern: str = ARTIFACT_GLOB) -> ArtifactDiscovery:
    """Read every matching file under root. Unreadable files are collected."""
    artifacts: list[Artifact] = []
    failures: list[ArtifactReadError] = []

    for path in discover_artifact_paths(root, pattern):
        try:
            artifact = read_artifact(path)
        except ArtifactReadError as e:
            logger.error("Cannot read artifact %s", e)
            failures.append(e)
            continue
        logger.debug(
            "Read artifact %s %s (%s) sha256=%s",
            artifact.name, artifact.version, artifact.architecture, artifact.hash,
        )
        artifacts.append(artifact)

    return ArtifactDiscovery(artifacts=artifacts, failures=failures)

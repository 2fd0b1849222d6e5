"""
Shared builders and in-process fakes for the IndexProof tests.

Nothing here touches the network or gpgv.
"""

import gzip
import hashlib
import io
import tarfile
from pathlib import Path
from typing import Optional

import zstandard

from indexproof.domain import Artifact, IndexBlob, IndexSource, IndexUnavailable
from indexproof.signature import SignedManifest


# =============================================================================
# INDEX TEXT
# =============================================================================

def stanza(name: str, version: str, hash_: str, **extra: str) -> str:
    """One Name/Version/Hash stanza (generic schema)."""
    lines = [f"Name: {name}", f"Version: {version}", f"Hash: {hash_}"]
    lines.extend(f"{key}: {value}" for key, value in extra.items())
    return "\n".join(lines)


def deb_stanza(package: str, version: str, sha256: str) -> str:
    """One Package/Version/SHA256 stanza (Debian schema)."""
    return "\n".join([
        f"Package: {package}",
        f"Version: {version}",
        "Architecture: amd64",
        f"SHA256: {sha256}",
        "Description: test package",
        " continuation line",
    ])


def index_text(*stanzas: str) -> str:
    return "\n\n".join(stanzas) + "\n"


def make_artifact(
    name: str = "foo",
    version: str = "1.2-1",
    hash_: str = "aa" * 32,
    path: str = "/pool/foo.deb",
    architecture: str = "amd64",
) -> Artifact:
    return Artifact(
        name=name,
        version=version,
        architecture=architecture,
        hash=hash_,
        source_path=Path(path),
    )


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeIndexProvider:
    """
    Serves index text per (suite, component).

    A missing key (or a None value) is IndexUnavailable.
    """

    def __init__(self, indexes: Optional[dict] = None):
        self.indexes = dict(indexes or {})
        self.calls: list[tuple[str, str]] = []

    def __call__(self, source: IndexSource) -> IndexBlob:
        self.calls.append(source.key)
        text = self.indexes.get(source.key)
        if text is None:
            raise IndexUnavailable(source, "not served")
        return IndexBlob(source=source, raw=gzip.compress(text.encode("utf-8")), text=text)


class FakeManifestFetcher:
    """Serves a signed manifest per suite; suites in `missing` raise OSError."""

    def __init__(self, missing: frozenset = frozenset(), tampered: frozenset = frozenset()):
        self.missing = missing
        self.tampered = tampered
        self.calls: list[str] = []

    def __call__(self, suite: str) -> SignedManifest:
        self.calls.append(suite)
        if suite in self.missing:
            raise OSError(f"404 for {suite}")
        signature = b"BAD" if suite in self.tampered else b"GOOD"
        return SignedManifest(payload=f"Suite: {suite}\n".encode(), signature=signature)


def fake_verifier(payload: bytes, signature: bytes, keyring: Path) -> bool:
    return signature == b"GOOD"


# =============================================================================
# .DEB BUILDER
# =============================================================================

def _ar_member(name: str, data: bytes) -> bytes:
    header = (
        f"{name + '/':<16}"
        f"{0:<12}"
        f"{0:<6}"
        f"{0:<6}"
        f"{'100644':<8}"
        f"{len(data):<10}"
        "`\n"
    ).encode("ascii")
    assert len(header) == 60
    padding = b"\n" if len(data) % 2 else b""
    return header + data + padding


def _tar_with_control(control: str, compression: str) -> bytes:
    """`compression` is a tarfile mode suffix, or "zst"."""
    buffer = io.BytesIO()
    tar_compression = "" if compression == "zst" else compression
    with tarfile.open(fileobj=buffer, mode=f"w:{tar_compression}") as tar:
        data = control.encode("utf-8")
        info = tarfile.TarInfo(name="./control")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    if compression == "zst":
        return zstandard.ZstdCompressor().compress(buffer.getvalue())
    return buffer.getvalue()


def build_deb(
    path: Path,
    package: str = "foo",
    version: str = "1.2-1",
    architecture: str = "amd64",
    payload: bytes = b"payload",
    compression: str = "gz",
) -> Path:
    """Write a minimal but well-formed .deb and return its path."""
    control = (
        f"Package: {package}\n"
        f"Version: {version}\n"
        f"Architecture: {architecture}\n"
        "Maintainer: Test <test@example.org>\n"
        "Description: test package\n"
        " long description\n"
        " .\n"
    )
    suffix = "" if compression == "" else f".{compression}"
    data = b"!<arch>\n"
    data += _ar_member("debian-binary", b"2.0\n")
    data += _ar_member(f"control.tar{suffix}", _tar_with_control(control, compression))
    data += _ar_member("data.tar", payload)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def sha256_of(path: Path) -> str:
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()

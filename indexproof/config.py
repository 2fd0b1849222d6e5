"""
Run configuration for the IndexProof engine.

Defaults describe the Ubuntu archive. Every value can be overridden per
run through RunConfig (the CLI builds one from its arguments).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .domain import DEBIAN_SCHEMA, IndexSource, StanzaSchema


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

DEFAULT_MIRROR = "https://archive.ubuntu.com/ubuntu"
DEFAULT_KEYRING = Path("/usr/share/keyrings/ubuntu-archive-keyring.gpg")
DEFAULT_ARCH = "amd64"
DEFAULT_CACHE_DIR = Path("./cache")

# Priority order: codename first, then its pockets, oldest release first
DEFAULT_CODENAMES = (
    "trusty", "xenial", "bionic", "focal", "jammy",
    "kinetic", "lunar", "mantic", "noble",
)
DEFAULT_POCKETS = ("", "-updates", "-security")
DEFAULT_SUITES = tuple(
    f"{codename}{pocket}"
    for codename in DEFAULT_CODENAMES
    for pocket in DEFAULT_POCKETS
)
DEFAULT_COMPONENTS = ("main", "universe", "multiverse", "restricted")

INDEX_FILENAME = "Packages.gz"
RELEASE_FILENAME = "Release"
RELEASE_SIGNATURE_FILENAME = "Release.gpg"

# Network and operator timeouts (seconds)
FETCH_TIMEOUT_SECONDS = 30.0
RETRY_PROMPT_TIMEOUT_SECONDS = 10.0

DEFAULT_WORKERS = 4
ARTIFACT_GLOB = "*.deb"
META_DIR_PREFIX = ".verify_meta_"


# =============================================================================
# URL LAYOUT
# =============================================================================

def suite_url(mirror: str, suite: str) -> str:
    return f"{mirror.rstrip('/')}/dists/{suite}"


def index_url(mirror: str, suite: str, component: str, arch: str) -> str:
    """`<mirror>/dists/<suite>/<component>/binary-<arch>/Packages.gz`"""
    return f"{suite_url(mirror, suite)}/{component}/binary-{arch}/{INDEX_FILENAME}"


def build_sources(
    suites: tuple[str, ...],
    components: tuple[str, ...],
    mirror: str = DEFAULT_MIRROR,
    arch: str = DEFAULT_ARCH,
) -> list[IndexSource]:
    """Sources in priority order: suites-list order x components-list order."""
    return [
        IndexSource(
            suite=suite,
            component=component,
            origin_url=index_url(mirror, suite, component, arch),
        )
        for suite in suites
        for component in components
    ]


# =============================================================================
# RUN CONFIG
# =============================================================================

@dataclass(frozen=True)
class RunConfig:
    """
    Per-run settings.

    forced_suites non-empty means forced-retry mode: exactly those suites
    are scanned and the Suite Gate is skipped.
    """
    input_dir: Path
    suites: tuple[str, ...] = DEFAULT_SUITES
    components: tuple[str, ...] = DEFAULT_COMPONENTS
    arch: str = DEFAULT_ARCH
    mirror: str = DEFAULT_MIRROR
    keyring: Path = DEFAULT_KEYRING
    cache_dir: Path = DEFAULT_CACHE_DIR
    forced_suites: tuple[str, ...] = ()
    workers: int = DEFAULT_WORKERS
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    retry_timeout: float = RETRY_PROMPT_TIMEOUT_SECONDS
    write_local_index: bool = True
    schema: StanzaSchema = DEBIAN_SCHEMA
    meta_dir: Optional[Path] = None

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if not self.components:
            raise ValueError("at least one component is required")
        if not self.suites and not self.forced_suites:
            raise ValueError("at least one suite is required")

    @property
    def is_forced(self) -> bool:
        return bool(self.forced_suites)

    @property
    def active_suites(self) -> tuple[str, ...]:
        return self.forced_suites if self.is_forced else self.suites

    def sources(self) -> list[IndexSource]:
        return build_sources(self.active_suites, self.components, self.mirror, self.arch)

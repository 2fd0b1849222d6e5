"""
Result Persistence for the IndexProof engine.

Writes what a run found, so that the run can be audited later:

    verify_<ts>.csv            — one row per artifact, sorted by folder
    gpg_failures_<ts>.txt      — suites that failed the gate (if any)
    Packages / Packages.gz     — local index of the scanned directory

Rows are appended while the run progresses, one complete row at a time,
under a lock. An interrupted run therefore leaves a valid (unsorted) log.
"""

from __future__ import annotations

import csv
import gzip
import io
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .config import META_DIR_PREFIX
from .domain import RESULT_HEADER, Artifact, ResultRecord
from .ingestion.stanza import format_index


logger = logging.getLogger(__name__)


TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
LOCAL_INDEX_FILENAME = "Packages"


# =============================================================================
# RUN DIRECTORY
# =============================================================================

def run_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def create_meta_dir(input_dir: Path, timestamp: str, prefix: str = META_DIR_PREFIX) -> Path:
    """Create `<input>/<prefix><ts>/` for this run's logs and reports."""
    meta_dir = Path(input_dir) / f"{prefix}{timestamp}"
    meta_dir.mkdir(parents=True, exist_ok=True)
    return meta_dir


def _replace_atomic(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


# =============================================================================
# RESULT LOG
# =============================================================================

class ResultLog:
    """
    CSV result log.

    append() writes and flushes one full row under a lock to
    `<path>.unsorted`. finalize() writes the sorted log to `<path>` and
    removes the unsorted file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.unsorted_path = self.path.with_name(self.path.name + ".unsorted")
        self._lock = threading.Lock()
        self._records: list[ResultRecord] = []

        self._fh = open(self.unsorted_path, "w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(RESULT_HEADER)
        self._fh.flush()

    def append(self, record: ResultRecord) -> None:
        with self._lock:
            self._writer.writerow(record.to_row())
            self._fh.flush()
            self._records.append(record)

    def replace(self, records: Iterable[ResultRecord]) -> None:
        """Swap the held records (after a merged retry) before finalizing."""
        with self._lock:
            self._records = list(records)

    @property
    def records(self) -> list[ResultRecord]:
        with self._lock:
            return list(self._records)

    def close(self) -> None:
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def finalize(self) -> Path:
        """Write the sorted log and drop the unsorted one."""
        self.close()
        write_result_csv(self.path, self.records)
        if self.unsorted_path.exists():
            self.unsorted_path.unlink()
        return self.path

    def __enter__(self) -> ResultLog:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def render_result_csv(records: Iterable[ResultRecord]) -> str:
    """Header plus rows, sorted by folder then filename."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(RESULT_HEADER)
    for record in sorted(records, key=ResultRecord.sort_key):
        writer.writerow(record.to_row())
    return buffer.getvalue()


def write_result_csv(path: Path, records: Iterable[ResultRecord]) -> Path:
    path = Path(path)
    _replace_atomic(path, render_result_csv(records))
    return path


def read_result_csv(path: Path) -> list[dict[str, str]]:
    """Read a result log back as dict rows (used for auditing and tests)."""
    with open(path, encoding="utf-8", newline="") as fh:
        return list(csv.DictReader(fh))


# =============================================================================
# FAILED SUITES
# =============================================================================

def write_failed_suites(path: Path, suites: Sequence[str]) -> Optional[Path]:
    """Write failed suites one per line. Nothing is written if none failed."""
    if not suites:
        return None
    path = Path(path)
    lines = ["Signature verification failed for the following suites:"]
    lines.extend(suites)
    _replace_atomic(path, "\n".join(lines) + "\n")
    return path


# =============================================================================
# LOCAL INDEX
# =============================================================================

def local_index_fields(artifact: Artifact, root: Path) -> dict[str, str]:
    """The stanza describing one artifact in a local index."""
    fields = {
        "Package": artifact.name,
        "Version": artifact.version,
    }
    if artifact.architecture:
        fields["Architecture"] = artifact.architecture
    fields["Filename"] = f"./{artifact.source_path.relative_to(root).as_posix()}"
    fields["Size"] = str(artifact.source_path.stat().st_size)
    fields["SHA256"] = artifact.hash
    return fields


def write_local_index(root: Path, artifacts: Sequence[Artifact]) -> tuple[Path, Path]:
    """
    Write `Packages` and `Packages.gz` for the artifacts under root.

    Stanzas are ordered by package name, then version, then filename.
    """
    root = Path(root)
    ordered = sorted(
        artifacts,
        key=lambda a: (a.name, a.version, str(a.source_path)),
    )
    text = format_index(local_index_fields(artifact, root) for artifact in ordered)

    plain = root / LOCAL_INDEX_FILENAME
    _replace_atomic(plain, text)

    compressed = root / f"{LOCAL_INDEX_FILENAME}.gz"
    compressed.write_bytes(gzip.compress(text.encode("utf-8"), mtime=0))

    logger.info("Local index written: %s (%d stanzas)", compressed, len(ordered))
    return plain, compressed

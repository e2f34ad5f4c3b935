"""Producer for Snakemake's per-job metadata files.

Snakemake writes one JSON file per output under ``.snakemake/metadata/``.
The file name is the base64 (URL-safe alphabet) of the output path; names
longer than the filesystem limit are split across nested directories, so
the relative path with separators removed is the encoded name.

``MetadataScanner`` keeps an mtime cache so repeated scans only re-parse
files that changed.  Files that fail to parse are not cached and are
retried on the next scan.
"""

from __future__ import annotations

import base64
import binascii
import json
import threading
from pathlib import Path

from pydantic import ValidationError

from charmer.core.exceptions import RecordParseError
from charmer.core.logging import get_logger
from charmer.state.records import WorkflowRecord

_logger = get_logger("metadata")

METADATA_SUBDIR = Path(".snakemake") / "metadata"


def metadata_dir(working_dir: Path) -> Path:
    return working_dir / METADATA_SUBDIR


def decode_metadata_filename(encoded: str) -> str:
    """Decode an encoded metadata file name back into the output path.

    Raises:
        RecordParseError: If the name is not base64 of a UTF-8 string.
    """
    try:
        return base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise RecordParseError(f"Not a metadata file name: {encoded!r}") from e


def encode_metadata_filename(output_path: str) -> str:
    return base64.urlsafe_b64encode(output_path.encode("utf-8")).decode("ascii")


def is_metadata_file(path: Path, directory: Path) -> bool:
    """True for non-hidden paths inside ``directory`` (at any depth)."""
    try:
        rel = path.relative_to(directory)
    except ValueError:
        return False
    if not rel.parts:
        return False
    return not any(part.startswith(".") for part in rel.parts)


def parse_metadata_file(path: Path, directory: Path) -> WorkflowRecord:
    """Read one metadata file.

    Raises:
        RecordParseError: If the file cannot be read, decoded or validated.
    """
    encoded = "".join(path.relative_to(directory).parts)
    output_path = decode_metadata_filename(encoded)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise RecordParseError(f"Cannot read {path}: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RecordParseError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise RecordParseError(f"Expected a JSON object in {path}")
    try:
        record = WorkflowRecord.model_validate(data)
    except ValidationError as e:
        raise RecordParseError(f"Unexpected metadata in {path}: {e}") from e
    record.output_path = output_path
    return record


def _iter_metadata_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.rglob("*")
        if p.is_file() and is_metadata_file(p, directory)
    )


def scan_metadata_directory(working_dir: Path) -> list[WorkflowRecord]:
    """Parse every metadata file, dropping unreadable ones with a warning."""
    return MetadataScanner(working_dir).scan()


class MetadataScanner:
    """Incremental reader for one workflow's metadata directory.

    ``scan`` and ``read_paths`` run in worker threads (the periodic scan and
    the change watcher can overlap), so both hold ``_lock`` while they touch
    the mtime cache.
    """

    def __init__(self, working_dir: Path) -> None:
        self.directory = metadata_dir(working_dir)
        self._mtimes: dict[Path, float] = {}
        self._lock = threading.Lock()

    @property
    def known_files(self) -> int:
        with self._lock:
            return len(self._mtimes)

    def _read(self, path: Path) -> WorkflowRecord | None:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            self._mtimes.pop(path, None)
            return None
        try:
            record = parse_metadata_file(path, self.directory)
        except RecordParseError as e:
            _logger.warning("metadata.record_dropped", path=str(path), error=str(e))
            self._mtimes.pop(path, None)
            return None
        self._mtimes[path] = mtime
        return record

    def scan(self) -> list[WorkflowRecord]:
        """Return records for files that are new or changed since the last scan."""
        files = _iter_metadata_files(self.directory)
        present = set(files)
        records: list[WorkflowRecord] = []
        with self._lock:
            for gone in [p for p in self._mtimes if p not in present]:
                del self._mtimes[gone]

            for path in files:
                try:
                    mtime = path.stat().st_mtime
                except OSError:
                    continue
                if self._mtimes.get(path) == mtime:
                    continue
                record = self._read(path)
                if record is not None:
                    records.append(record)
        return records

    def read_paths(self, paths: list[Path]) -> list[WorkflowRecord]:
        """Parse specific files (from change notifications), bypassing the cache check."""
        records: list[WorkflowRecord] = []
        with self._lock:
            for path in paths:
                if not is_metadata_file(path, self.directory) or not path.is_file():
                    continue
                record = self._read(path)
                if record is not None:
                    records.append(record)
        return records


__all__ = [
    "METADATA_SUBDIR",
    "MetadataScanner",
    "decode_metadata_filename",
    "encode_metadata_filename",
    "is_metadata_file",
    "metadata_dir",
    "parse_metadata_file",
    "scan_metadata_directory",
]

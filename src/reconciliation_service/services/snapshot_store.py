"""Baseline snapshot and last-diff persistence (JSON files)."""

import os
import tempfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
import structlog

from reconciliation_service.domain import CatalogEntity, DiffResult
from reconciliation_service.exceptions import SnapshotError
from shared.constants import BASELINE_FILENAME, LAST_DIFF_FILENAME

logger = structlog.get_logger()


def merge_baseline(
    previous: Iterable[CatalogEntity] | None,
    current: Iterable[CatalogEntity],
    pending_keys: Iterable[str],
) -> list[CatalogEntity]:
    """Next baseline: the current set, except for changes not yet applied.

    For every key in ``pending_keys`` (truncated by a limit or rejected by the
    remote) the previous baseline entry is kept, or the key stays absent if it
    had none, so the next pass detects the change again.
    """
    previous_by_key = {e.key: e for e in previous or []}
    current_by_key = {e.key: e for e in current}
    pending = set(pending_keys)

    merged: dict[str, CatalogEntity] = {}
    for key in list(current_by_key) + [k for k in previous_by_key if k not in current_by_key]:
        source = previous_by_key if key in pending else current_by_key
        if key in source:
            merged[key] = source[key]
    return list(merged.values())


class SnapshotStore:
    """Reads and atomically writes the baseline and the last diff."""

    def __init__(
        self,
        data_dir: str | Path,
        *,
        baseline_name: str = BASELINE_FILENAME,
        diff_name: str = LAST_DIFF_FILENAME,
    ):
        self.data_dir = Path(data_dir)
        self.baseline_path = self.data_dir / baseline_name
        self.diff_path = self.data_dir / diff_name

    def _read(self, path: Path) -> Any | None:
        if not path.exists():
            return None
        try:
            return orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            raise SnapshotError(f"Cannot read {path}: {e}") from e

    def _write(self, path: Path, data: Any) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SnapshotError(f"Cannot write {path}: {e}") from e

    def load_baseline(self) -> list[CatalogEntity] | None:
        """The last baseline, or ``None`` on first run.

        Raises :class:`SnapshotError` when the file exists but is unreadable.
        """
        data = self._read(self.baseline_path)
        if data is None:
            return None
        items = data.get("entities", []) if isinstance(data, dict) else data
        try:
            return [CatalogEntity.from_dict(item) for item in items]
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise SnapshotError(f"Corrupt baseline {self.baseline_path}: {e}") from e

    def baseline_saved_at(self) -> datetime | None:
        data = self._read(self.baseline_path)
        if isinstance(data, dict) and data.get("saved_at"):
            return datetime.fromisoformat(data["saved_at"])
        return None

    def save_baseline(self, entities: Iterable[CatalogEntity]) -> int:
        items = [e.to_dict() for e in entities]
        self._write(
            self.baseline_path,
            {"saved_at": datetime.now(timezone.utc).isoformat(), "entities": items},
        )
        logger.info("Baseline saved", path=str(self.baseline_path), entities=len(items))
        return len(items)

    def save_diff(self, diff: DiffResult) -> None:
        self._write(
            self.diff_path,
            {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "summary": diff.counts(),
                "new": [e.to_dict() for e in diff.new],
                "updated": [e.to_dict() for e in diff.updated],
                "removed": [e.to_dict() for e in diff.removed],
            },
        )
        logger.info("Diff saved", path=str(self.diff_path), **diff.counts())

    def load_diff(self) -> dict[str, Any] | None:
        return self._read(self.diff_path)

"""Persistence of the incremental-scan watermark."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from archive_search.models import IndexingState

logger = logging.getLogger(__name__)


class IndexingStateStore:
    """Read and write `{"lastScanTime": ...}` next to the search database."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> IndexingState:
        if not self.path.exists():
            return IndexingState()
        try:
            return IndexingState.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable indexing state %s: %s", self.path, exc)
            return IndexingState()

    def save(self, state: IndexingState) -> None:
        """Atomically replace the state file; failures are logged, not raised."""

        payload = json.dumps(state.model_dump(by_alias=True), indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".indexing-state-", suffix=".tmp", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to persist indexing state to %s: %s", self.path, exc)

"""
State file persistence — atomic read/write for WizardSnapshot.

The snapshot is stored as JSON in ``<state_dir>/wizard-state.json``.
Writes are atomic (write to temp file, then rename) so a crash mid-write
leaves the previous snapshot intact.

``StateStore.write()`` is debounced: rapid updates (one per step
outcome, one per service transition) coalesce into a single save of
the latest snapshot after ``debounce`` seconds of quiet.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from ttshub.core.models.snapshot import WizardSnapshot

logger = logging.getLogger(__name__)

STATE_FILE = "wizard-state.json"


def load_snapshot(path: Path) -> WizardSnapshot | None:
    """Load a snapshot from a JSON file.

    Returns:
        The snapshot, or None if the file is missing, unreadable or
        does not validate.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        snapshot = WizardSnapshot.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, snapshot.updated_at)
        return snapshot
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return None
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return None


def save_snapshot(snapshot: WizardSnapshot, path: Path) -> None:
    """Save a snapshot to a JSON file (atomic write)."""
    snapshot.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = snapshot.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
        logger.debug("State saved to %s", path)
    except Exception as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise


class StateStore:
    """Snapshot persistence with debounced writes.

    Args:
        state_dir: Directory holding ``wizard-state.json``.
        debounce: Quiet period before a pending write is flushed.
            ``0`` saves synchronously.
    """

    def __init__(self, state_dir: Path, *, debounce: float = 0.5) -> None:
        self._path = Path(state_dir) / STATE_FILE
        self._debounce = debounce
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._pending: WizardSnapshot | None = None
        self._pending_generation = 0
        self._generation = 0
        self._saved_generation = 0
        self._timer: threading.Timer | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def load(self) -> WizardSnapshot | None:
        return load_snapshot(self._path)

    def save(self, snapshot: WizardSnapshot) -> None:
        """Write immediately, discarding any pending debounced write."""
        with self._lock:
            self._cancel_timer()
            self._pending = None
            self._generation += 1
            generation = self._generation
        self._persist(snapshot.model_copy(deep=True), generation)

    def write(self, snapshot: WizardSnapshot) -> None:
        """Schedule a save of ``snapshot``; later calls replace it."""
        if self._debounce <= 0:
            self.save(snapshot)
            return
        with self._lock:
            self._generation += 1
            self._pending = snapshot.model_copy(deep=True)
            self._pending_generation = self._generation
            self._cancel_timer()
            self._timer = threading.Timer(self._debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Save the pending snapshot now, if any."""
        with self._lock:
            self._cancel_timer()
            pending, self._pending = self._pending, None
            generation = self._pending_generation
        if pending is None:
            return
        try:
            self._persist(pending, generation)
        except OSError as e:
            logger.error("Debounced state write failed: %s", e)

    def _persist(self, snapshot: WizardSnapshot, generation: int) -> None:
        # Writes land in generation order; a snapshot older than the one
        # on disk is dropped.
        with self._write_lock:
            if generation < self._saved_generation:
                logger.debug(
                    "Dropping stale snapshot write (generation %d < %d)",
                    generation, self._saved_generation,
                )
                return
            save_snapshot(snapshot, self._path)
            self._saved_generation = generation

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

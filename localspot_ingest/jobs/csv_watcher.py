"""Watchdog-based watcher that imports CSV files dropped into the watch directory."""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from localspot_ingest.core.config import get_settings
from localspot_ingest.etl.csv_importer import import_csv_file
from localspot_ingest.models import FileState, PendingFile

logger = logging.getLogger(__name__)

PROCESSED_DIRNAME = "processed"
ERROR_DIRNAME = "error"

Importer = Callable[[str], object]


class CsvWatcher(FileSystemEventHandler):
    """Imports each stable CSV file in ``directory`` once, then moves it aside.

    A file is dispatched only after ``quiesce_seconds`` pass without another
    create/modify event for it. Successful imports land in ``processed/``,
    failed ones in ``error/``. Subdirectories are never watched.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        *,
        importer: Optional[Importer] = None,
        quiesce_seconds: float = 1.0,
        executor: Optional[Executor] = None,
    ) -> None:
        super().__init__()
        self.directory = Path(os.path.abspath(directory))
        self.processed_dir = self.directory / PROCESSED_DIRNAME
        self.error_dir = self.directory / ERROR_DIRNAME
        self.quiesce_seconds = quiesce_seconds
        self._importer = importer or import_csv_file
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="csv-import")
        self._observer: Optional[Observer] = None
        self._lock = threading.RLock()
        # serializes target-name selection and the move; never held with _lock
        self._move_lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}
        self._in_flight: Set[str] = set()
        self._processed: Set[str] = set()
        self._files: Dict[str, PendingFile] = {}

    # ---------- lifecycle ----------

    def start(self) -> "CsvWatcher":
        logger.info("Starting CSV watcher...")
        for path in (self.directory, self.processed_dir, self.error_dir):
            if not path.exists():
                path.mkdir(parents=True, exist_ok=True)
                logger.info("Created directory %s", path)

        observer = Observer()
        observer.schedule(self, str(self.directory), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer

        for path in sorted(self.directory.iterdir()):
            if path.is_file() and self._is_candidate(str(path)):
                self._schedule(str(path))

        logger.info("Watching for CSV files in %s", self.directory)
        return self

    def stop(self, wait: bool = True) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        self._executor.shutdown(wait=wait)
        logger.info("CSV watcher stopped")

    @property
    def is_watching(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def pending_files(self) -> Dict[str, str]:
        with self._lock:
            return {path: pending.state.value for path, pending in self._files.items()}

    # ---------- watchdog callbacks ----------

    def dispatch(self, event: FileSystemEvent) -> None:
        try:
            super().dispatch(event)
        except Exception as exc:  # noqa: BLE001
            logger.exception("CSV watcher error: %s", exc)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_added(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_added(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle_added(event.dest_path)

    # ---------- scheduling ----------

    def _handle_added(self, path: Union[str, bytes]) -> None:
        path = os.fsdecode(path)
        if self._is_candidate(path):
            self._schedule(path)

    def _is_candidate(self, path: str) -> bool:
        candidate = Path(os.path.abspath(path))
        if candidate.parent != self.directory:
            return False
        if candidate.name.startswith("."):
            return False
        return candidate.suffix.lower() == ".csv"

    def _schedule(self, path: str) -> None:
        key = os.path.abspath(path)
        with self._lock:
            if key in self._in_flight or key in self._processed:
                return
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            else:
                logger.info("New CSV file detected: %s", key)
            self._files[key] = PendingFile(key, FileState.DETECTED)
            timer = threading.Timer(self.quiesce_seconds, self._on_settled, args=[key])
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _on_settled(self, key: str) -> None:
        with self._lock:
            self._timers.pop(key, None)
        if not os.path.exists(key):
            logger.info("CSV file disappeared before processing: %s", key)
            with self._lock:
                self._files.pop(key, None)
            return
        self.enqueue(key)

    def enqueue(self, path: Union[str, Path]) -> bool:
        """Queue a file for import on the executor, skipping the quiesce window."""
        key = os.path.abspath(path)
        with self._lock:
            if key in self._in_flight or key in self._processed:
                logger.info("Ignoring %s: already in progress or processed", key)
                return False
        try:
            self._executor.submit(self._process_safe, key)
        except RuntimeError as exc:
            logger.error("Could not queue %s for import: %s", key, exc)
            return False
        return True

    def _process_safe(self, key: str) -> None:
        try:
            self.process_file(key)
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error while processing %s", key)

    # ---------- processing ----------

    def process_file(self, path: Union[str, Path]) -> Optional[FileState]:
        """Import one file and move it to ``processed/`` or ``error/``.

        Returns the final state, or ``None`` when the file was skipped
        because it is already in flight or processed.
        """
        key = os.path.abspath(path)
        with self._lock:
            if key in self._in_flight or key in self._processed:
                return None
            self._in_flight.add(key)
            self._files[key] = PendingFile(key, FileState.IN_PROGRESS)

        logger.info("Processing CSV file %s", key)
        try:
            try:
                self._importer(key)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error processing CSV file %s: %s", key, exc)
                target = self._relocate(key, self.error_dir, "error")
                if target is not None:
                    logger.info("Moved file with errors to %s", target)
                state = FileState.ERRORED
            else:
                with self._lock:
                    self._processed.add(key)
                target = self._relocate(key, self.processed_dir, "processed")
                if target is not None:
                    logger.info("Moved processed file to %s", target)
                state = FileState.PROCESSED
        finally:
            with self._lock:
                self._in_flight.discard(key)

        with self._lock:
            self._files[key] = PendingFile(key, state)
        return state

    def _relocate(self, key: str, target_dir: Path, prefix: str) -> Optional[Path]:
        with self._move_lock:
            try:
                return relocate_file(key, target_dir, prefix)
            except OSError as exc:
                logger.error("Failed to move %s to %s: %s", key, target_dir, exc)
                return None


def relocate_file(path: Union[str, Path], target_dir: Path, prefix: str) -> Path:
    """Move ``path`` to ``target_dir/<prefix>_<epoch-ms>.csv`` without overwriting anything."""
    target_dir.mkdir(parents=True, exist_ok=True)
    timestamp = int(time.time() * 1000)
    target = target_dir / f"{prefix}_{timestamp}.csv"
    while target.exists():
        timestamp += 1
        target = target_dir / f"{prefix}_{timestamp}.csv"
    shutil.move(str(path), str(target))
    return target


def start_csv_watcher(directory: Optional[Union[str, Path]] = None, **kwargs) -> CsvWatcher:
    """Build a watcher from settings and start it. Call ``stop()`` to shut down."""
    settings = get_settings()
    kwargs.setdefault("quiesce_seconds", settings.csv_quiesce_seconds)
    watcher = CsvWatcher(directory or settings.csv_watch_dir, **kwargs)
    return watcher.start()

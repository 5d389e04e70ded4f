import functools
import threading
import time

import pytest
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from localspot_ingest.core.config import Settings
from localspot_ingest.etl import csv_importer
from localspot_ingest.etl.csv_importer import CsvImportError
from localspot_ingest.jobs import csv_watcher
from localspot_ingest.jobs.csv_watcher import CsvWatcher
from localspot_ingest.models import FileState

HEADER = "name,description,category,address,latitude,longitude\n"


class ImmediateExecutor:
    """Runs submitted work inline so tests stay deterministic."""

    def __init__(self):
        self.submitted = []
        self.shut_down = False

    def submit(self, fn, *args):
        if self.shut_down:
            raise RuntimeError("cannot schedule new futures after shutdown")
        self.submitted.append(args)
        fn(*args)

    def shutdown(self, wait=True):
        self.shut_down = True


class RecordingImporter:
    def __init__(self, error=None):
        self.calls = []
        self.error = error
        self.called = threading.Event()

    def __call__(self, path):
        self.calls.append(path)
        self.called.set()
        if self.error is not None:
            raise self.error


class FakeStorage:
    def __init__(self):
        self.rows = []

    def find_business_by_name_and_address(self, name, address):
        return next((r for r in self.rows if r["name"] == name and r["address"] == address), None)

    def insert_business(self, row):
        self.rows.append(row)
        return row


@pytest.fixture
def watch_dir(tmp_path):
    directory = tmp_path / "csv"
    directory.mkdir()
    return directory


def make_watcher(watch_dir, importer, quiesce_seconds=0.01):
    return CsvWatcher(watch_dir, importer=importer, quiesce_seconds=quiesce_seconds, executor=ImmediateExecutor())


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_successful_import_moves_file_to_processed(watch_dir):
    path = watch_dir / "batch.csv"
    path.write_text(HEADER)
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer)

    state = watcher.process_file(path)

    assert state is FileState.PROCESSED
    assert importer.calls == [str(path)]
    assert not path.exists()
    moved = list((watch_dir / "processed").iterdir())
    assert len(moved) == 1
    assert moved[0].name.startswith("processed_") and moved[0].suffix == ".csv"
    assert watcher.pending_files() == {str(path): "processed"}


def test_failed_import_moves_file_to_error(watch_dir, caplog):
    path = watch_dir / "batch.csv"
    path.write_text(HEADER)
    watcher = make_watcher(watch_dir, RecordingImporter(error=CsvImportError("nothing imported")))

    with caplog.at_level("ERROR"):
        state = watcher.process_file(path)

    assert state is FileState.ERRORED
    moved = list((watch_dir / "error").iterdir())
    assert len(moved) == 1 and moved[0].name.startswith("error_")
    assert "nothing imported" in caplog.text


def test_errored_path_can_be_retried_but_processed_path_cannot(watch_dir):
    path = watch_dir / "batch.csv"
    importer = RecordingImporter(error=RuntimeError("boom"))
    watcher = make_watcher(watch_dir, importer)

    path.write_text(HEADER)
    assert watcher.process_file(path) is FileState.ERRORED

    importer.error = None
    path.write_text(HEADER)
    assert watcher.process_file(path) is FileState.PROCESSED

    path.write_text(HEADER)
    assert watcher.process_file(path) is None
    assert len(importer.calls) == 2


def test_in_flight_path_is_not_dispatched_twice(watch_dir):
    path = watch_dir / "batch.csv"
    path.write_text(HEADER)
    nested = []

    def importer(p):
        nested.append(watcher.process_file(p))

    watcher = make_watcher(watch_dir, importer)

    assert watcher.process_file(path) is FileState.PROCESSED
    assert nested == [None]


def test_relocate_file_never_overwrites(tmp_path, monkeypatch):
    monkeypatch.setattr(csv_watcher.time, "time", lambda: 1700000000.0)
    target_dir = tmp_path / "processed"
    first, second = tmp_path / "a.csv", tmp_path / "b.csv"
    first.write_text("a")
    second.write_text("b")

    one = csv_watcher.relocate_file(first, target_dir, "processed")
    two = csv_watcher.relocate_file(second, target_dir, "processed")

    assert one.name == "processed_1700000000000.csv"
    assert two.name == "processed_1700000000001.csv"
    assert one.read_text() == "a" and two.read_text() == "b"


def test_scheduling_is_not_blocked_while_a_file_is_moved(watch_dir, monkeypatch):
    path = watch_dir / "batch.csv"
    path.write_text(HEADER)
    other = watch_dir / "other.csv"
    other.write_text(HEADER)
    watcher = make_watcher(watch_dir, RecordingImporter(), quiesce_seconds=60)
    scheduled_during_move = []
    real_relocate = csv_watcher.relocate_file

    def relocate_while_scheduling(src, target_dir, prefix):
        done = threading.Event()
        worker = threading.Thread(target=lambda: (watcher._schedule(str(other)), done.set()))
        worker.start()
        scheduled_during_move.append(done.wait(2))
        worker.join(2)
        return real_relocate(src, target_dir, prefix)

    monkeypatch.setattr(csv_watcher, "relocate_file", relocate_while_scheduling)

    try:
        assert watcher.process_file(path) is FileState.PROCESSED
    finally:
        watcher.stop()

    assert scheduled_during_move == [True]
    assert watcher.pending_files()[str(other)] == "detected"


def test_relocation_failure_is_logged(watch_dir, caplog):
    path = watch_dir / "batch.csv"
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer)

    with caplog.at_level("ERROR"):
        state = watcher.process_file(path)  # never created, so the move fails

    assert state is FileState.PROCESSED
    assert "Failed to move" in caplog.text


@pytest.mark.parametrize("name", ["notes.txt", ".hidden.csv", "processed/old.csv"])
def test_events_for_other_files_are_ignored(watch_dir, name):
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer)
    (watch_dir / "processed").mkdir()
    target = watch_dir / name
    target.write_text(HEADER)

    watcher.on_created(FileCreatedEvent(str(target)))
    time.sleep(0.1)

    assert importer.calls == []


def test_extension_match_is_case_insensitive(watch_dir):
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer)
    target = watch_dir / "UPPER.CSV"
    target.write_text(HEADER)

    watcher.on_created(FileCreatedEvent(str(target)))

    assert importer.called.wait(5)
    assert importer.calls == [str(target)]


def test_rapid_events_are_debounced_into_one_import(watch_dir):
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer, quiesce_seconds=0.2)
    target = watch_dir / "batch.csv"
    target.write_text(HEADER)

    watcher.on_created(FileCreatedEvent(str(target)))
    watcher.on_modified(FileModifiedEvent(str(target)))
    watcher.on_modified(FileModifiedEvent(str(target)))

    assert importer.called.wait(5)
    time.sleep(0.3)
    assert importer.calls == [str(target)]


def test_moved_in_file_is_picked_up(watch_dir, tmp_path):
    importer = RecordingImporter()
    watcher = make_watcher(watch_dir, importer)
    target = watch_dir / "batch.csv"
    target.write_text(HEADER)

    watcher.on_moved(FileMovedEvent(str(tmp_path / "staging.csv"), str(target)))

    assert importer.called.wait(5)


def test_handler_errors_do_not_escape(watch_dir, monkeypatch, caplog):
    watcher = make_watcher(watch_dir, RecordingImporter())

    def broken(path):
        raise OSError("inotify hiccup")

    monkeypatch.setattr(watcher, "_handle_added", broken)

    with caplog.at_level("ERROR"):
        watcher.dispatch(FileCreatedEvent(str(watch_dir / "batch.csv")))

    assert "CSV watcher error" in caplog.text


def test_enqueue_after_shutdown_is_refused(watch_dir):
    watcher = make_watcher(watch_dir, RecordingImporter())
    watcher._executor.shutdown()

    assert watcher.enqueue(watch_dir / "batch.csv") is False


def test_start_creates_directories_and_imports_existing_files(tmp_path):
    directory = tmp_path / "incoming"
    importer = RecordingImporter()
    watcher = CsvWatcher(directory, importer=importer, quiesce_seconds=0.01, executor=ImmediateExecutor())

    directory.mkdir()
    existing = directory / "waiting.csv"
    existing.write_text(HEADER)

    watcher.start()
    try:
        assert (directory / "processed").is_dir()
        assert (directory / "error").is_dir()
        assert watcher.is_watching
        assert importer.called.wait(5)
        assert wait_for(lambda: not existing.exists())
    finally:
        watcher.stop()

    assert not watcher.is_watching
    assert importer.calls == [str(existing)]


def test_start_creates_missing_watch_directory(tmp_path):
    directory = tmp_path / "not" / "there" / "yet"
    watcher = CsvWatcher(directory, importer=RecordingImporter(), quiesce_seconds=0.01, executor=ImmediateExecutor())

    assert not directory.exists()
    watcher.start()
    try:
        assert directory.is_dir()
        assert (directory / "processed").is_dir()
        assert (directory / "error").is_dir()
        assert watcher.is_watching
    finally:
        watcher.stop()


def _pipeline_watcher(watch_dir, storage):
    settings = Settings(database_url="postgres://", geocode_retry_delay_seconds=0)
    importer = functools.partial(csv_importer.import_csv_file, storage=storage, settings=settings)
    return make_watcher(watch_dir, importer)


def test_partially_valid_file_lands_in_processed(watch_dir):
    path = watch_dir / "mixed.csv"
    path.write_text(
        HEADER
        + "Cafe A,desc,Coffee Shop,1 Main St,45.1,-122.1\n"
        + ",desc,Coffee Shop,2 Main St,45.2,-122.2\n"
        + "Bakery B,desc,Bakery,3 Main St,45.3,-122.3\n"
        + "Books C,desc,,4 Main St,45.4,-122.4\n"
        + "Bar D,desc,Bar,5 Main St,45.5,-122.5\n"
    )
    storage = FakeStorage()

    assert _pipeline_watcher(watch_dir, storage).process_file(path) is FileState.PROCESSED
    assert len(storage.rows) == 3
    assert len(list((watch_dir / "processed").iterdir())) == 1


def test_all_invalid_file_lands_in_error(watch_dir):
    path = watch_dir / "bad.csv"
    path.write_text(HEADER + ",desc,Coffee Shop,1 Main St,45.1,-122.1\nNo Category,desc,,2 Main St,45.2,-122.2\n")
    storage = FakeStorage()

    assert _pipeline_watcher(watch_dir, storage).process_file(path) is FileState.ERRORED
    assert storage.rows == []
    assert len(list((watch_dir / "error").iterdir())) == 1


def test_unparseable_file_lands_in_error(watch_dir):
    path = watch_dir / "broken.csv"
    path.write_text(HEADER + '"Cafe A"x,desc,Coffee Shop,1 Main St,45.1,-122.1\n')
    storage = FakeStorage()

    assert _pipeline_watcher(watch_dir, storage).process_file(path) is FileState.ERRORED
    assert storage.rows == []

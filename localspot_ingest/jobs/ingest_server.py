"""HTTP entrypoint that runs the CSV watcher and exposes health and manual import routes."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from localspot_ingest.core.config import get_settings
from localspot_ingest.core.db import ensure_schema
from localspot_ingest.jobs.csv_watcher import CsvWatcher, start_csv_watcher

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & watcher ----------
app = Flask(__name__)
_watcher: Optional[CsvWatcher] = None

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Report whether the watcher is alive and what it has seen so far."""
    settings = get_settings()
    watcher = _watcher
    return (
        jsonify(
            {
                "status": "ok",
                "watch_directory": str(watcher.directory) if watcher else settings.csv_watch_dir,
                "watching": bool(watcher and watcher.is_watching),
                "files": watcher.pending_files() if watcher else {},
            }
        ),
        200,
    )


@app.post("/import")
def enqueue_import() -> Any:
    """
    Queue an import of a file already sitting in the watch directory.
    Required JSON field: filename (bare name ending in .csv)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    watcher = _watcher
    if watcher is None:
        return jsonify({"error": "watcher is not running"}), 503

    filename = str(payload.get("filename") or "").strip()
    if not filename:
        return jsonify({"error": "missing fields: filename"}), 400
    if os.path.basename(filename) != filename or filename.startswith("."):
        return jsonify({"error": "filename must be a bare file name"}), 400
    if not filename.lower().endswith(".csv"):
        return jsonify({"error": "filename must end with .csv"}), 400

    path = watcher.directory / filename
    if not path.is_file():
        return jsonify({"error": f"{filename} not found in watch directory"}), 404

    logger.info("Queueing manual import of %s", path)
    if not watcher.enqueue(path):
        return jsonify({"error": f"{filename} is already being processed or was processed"}), 409

    return jsonify({"data": {"status": "queued", "file": filename}}), 202


# ---------- Internals ----------


def main() -> None:
    global _watcher
    settings = get_settings()

    if settings.db_ensure_schema:
        ensure_schema()

    _watcher = start_csv_watcher(settings.csv_watch_dir)

    port = int(os.getenv("PORT") or settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    try:
        app.run(host="0.0.0.0", port=port)
    finally:
        _watcher.stop()


if __name__ == "__main__":
    main()

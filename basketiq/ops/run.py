from __future__ import annotations

import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

import yaml

from basketiq.utils.paths import OUTPUTS_DIR
from basketiq.utils.config import Config, load_config
from basketiq.utils.logger import get_logger


logger = get_logger(__name__)


def _utc_now_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


@contextmanager
def run_context(phase: str, cfg: Config | None = None) -> Iterator[Dict[str, Any]]:
    """Open a run directory with JSONL event log, manifest and registry entries.

    Yields a dict exposing ``run_id``, ``run_dir`` and the ``log``,
    ``write_manifest`` and ``append_registry`` callables.
    """
    resolved = cfg if cfg is not None else load_config()
    run_id = _utc_now_id()
    run_dir = OUTPUTS_DIR / "runs" / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    logs_path = run_dir / "logs.jsonl"
    manifest_path = run_dir / "manifest.json"
    registry_path = OUTPUTS_DIR / "runs" / "runs.jsonl"

    def log(event: Dict[str, object]) -> None:
        if not resolved.logging.jsonl:
            return
        payload = {"ts": datetime.now(timezone.utc).isoformat(), "phase": phase, "run_id": run_id}
        payload.update(event)
        with open(logs_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, default=str) + "\n")

    def write_manifest(files: Dict[str, str]) -> None:
        with open(manifest_path, "w", encoding="utf-8") as f:
            json.dump({"files": files}, f, indent=2)

    def append_registry(entry: Dict[str, object]) -> None:
        entry_with_ids = {"run_id": run_id, **entry}
        with open(registry_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry_with_ids, default=str) + "\n")

    t0 = time.time()
    start_ts = datetime.now(timezone.utc).isoformat()
    log({"level": "INFO", "event": "start"})
    append_registry({"started_at": start_ts, "status": "running", "phase": phase, "artifacts_path": str(run_dir)})

    # Resolved config snapshot
    with open(run_dir / "config_resolved.yaml", "w", encoding="utf-8") as f:
        yaml.safe_dump(resolved.to_dict(), f, sort_keys=False)

    try:
        yield {"run_id": run_id, "run_dir": str(run_dir), "log": log, "write_manifest": write_manifest, "append_registry": append_registry}
    except Exception as e:
        dt = int((time.time() - t0) * 1000)
        log({"level": "ERROR", "event": "exception", "err": str(e), "duration_ms": dt})
        append_registry({"started_at": start_ts, "finished_at": datetime.now(timezone.utc).isoformat(), "status": "error", "phase": phase, "artifacts_path": str(run_dir), "error": str(e)})
        logger.error("Run %s (%s) failed: %s", run_id, phase, e)
        raise
    dt = int((time.time() - t0) * 1000)
    log({"level": "INFO", "event": "finish", "duration_ms": dt})
    append_registry({"started_at": start_ts, "finished_at": datetime.now(timezone.utc).isoformat(), "status": "finished", "phase": phase, "artifacts_path": str(run_dir)})

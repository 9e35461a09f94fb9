"""
Task audit persistence for LaTeX Master.
Stores each finished task's report and full operation history as a JSON file,
one directory per project, so past runs can be listed and inspected.
"""

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from agent.events import TaskReport
from config import app_config, model_config

logger = logging.getLogger(__name__)

TASK_RECORD_VERSION = 1


@dataclass
class TaskRecord:
    """A persisted task report."""
    task_id: str = ""
    version: int = TASK_RECORD_VERSION
    task: str = ""
    working_directory: str = ""
    model_id: str = ""
    state: str = ""
    reason: str = ""
    summary: str = ""
    saved_at: str = ""
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def operation_count(self) -> int:
        return self.report.get("total_operations", 0)


def _slugify(name: str) -> str:
    """Turn a project directory name into a safe filename component."""
    s = name.lower().strip()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = s.strip("-")[:50]
    return s or "project"


def _dir_hash(working_directory: str) -> str:
    """Deterministic short hash of a working directory path."""
    return hashlib.sha256(os.path.abspath(working_directory).encode()).hexdigest()[:12]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TaskStore:
    """
    Manages task report files on disk.

    File layout:  {base_dir}/{project_slug}-{dir_hash}/{task_id}.json
    """

    def __init__(self, working_directory: str = ".", base_dir: Optional[str] = None):
        self.working_directory = os.path.abspath(working_directory)
        self.base_dir = base_dir or app_config.task_store_dir
        project = _slugify(os.path.basename(self.working_directory))
        self.project_dir = os.path.join(self.base_dir, f"{project}-{_dir_hash(self.working_directory)}")
        os.makedirs(self.project_dir, exist_ok=True)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def save(self, report: TaskReport) -> str:
        """Save a task report to disk. Returns the file path."""
        record = TaskRecord(
            task_id=report.task_id,
            task=report.task,
            working_directory=self.working_directory,
            model_id=model_config.model_id,
            state=report.state.value,
            reason=report.reason,
            summary=report.summary(),
            saved_at=_now_iso(),
            report=report.to_dict(),
        )
        path = self._path_for(report.task_id)

        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(asdict(record), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.info(f"Task report saved: {path}")
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        return path

    def load(self, task_id: str) -> Optional[TaskRecord]:
        """Load a task record by ID."""
        path = self._path_for(task_id)
        if not os.path.exists(path):
            return None
        return self._read_file(path)

    def delete(self, task_id: str) -> bool:
        """Delete a task record. Returns True if deleted."""
        path = self._path_for(task_id)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Task report deleted: {path}")
            return True
        return False

    def list_tasks(self) -> List[TaskRecord]:
        """List all task records for this project, newest first."""
        records: List[TaskRecord] = []
        for fname in os.listdir(self.project_dir):
            if fname.endswith(".json"):
                record = self._read_file(os.path.join(self.project_dir, fname))
                if record:
                    records.append(record)

        records.sort(key=lambda r: r.saved_at or "", reverse=True)
        return records

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _path_for(self, task_id: str) -> str:
        return os.path.join(self.project_dir, f"{_slugify(task_id)}.json")

    def _read_file(self, path: str) -> Optional[TaskRecord]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return TaskRecord(
                task_id=data.get("task_id", ""),
                version=data.get("version", TASK_RECORD_VERSION),
                task=data.get("task", ""),
                working_directory=data.get("working_directory", ""),
                model_id=data.get("model_id", ""),
                state=data.get("state", ""),
                reason=data.get("reason", ""),
                summary=data.get("summary", ""),
                saved_at=data.get("saved_at", ""),
                report=data.get("report", {}),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read task report {path}: {e}")
            return None

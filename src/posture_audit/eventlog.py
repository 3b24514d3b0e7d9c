"""
JSONL event log: the audit trail of one run.

Each call appends one JSON object per line to LOGS_DIR/run_<run_id>.jsonl:

    {"timestamp": ..., "run_id": ..., "event_type": ..., "state": ..., "data": {...}}

Writing the trail must never break the run it documents, so write failures
are printed and otherwise ignored.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .settings import LOGS_DIR


def new_run_id() -> str:
    """Run identifier used in log and snapshot file names."""
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


class EventLog:
    """
    Append-only workflow event log.

    Args:
        logs_dir: Directory for log files (created on first write)
        run_id: Identifier linking all events of one run
    """

    def __init__(self, logs_dir: Union[str, Path] = LOGS_DIR, run_id: Optional[str] = None):
        self.logs_dir = Path(logs_dir)
        self.run_id = run_id or new_run_id()
        self.state = "INITIALIZED"

    @property
    def path(self) -> Path:
        return self.logs_dir / f"run_{self.run_id}.jsonl"

    def log(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Append one event.

        Args:
            event_type: Event name, e.g. 'AUDIT_STARTED' or 'RECORD_SKIPPED'
            data: Event-specific payload (must be JSON serializable; other
                values are stringified)
        """
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'run_id': self.run_id,
            'event_type': event_type,
            'state': self.state,
            'data': data or {},
        }
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry, default=str) + '\n')
        except OSError as e:
            print(f"⚠ Failed to write log entry: {e}")

    def read(self) -> List[Dict[str, Any]]:
        """All events logged so far for this run."""
        if not self.path.exists():
            return []
        with open(self.path, 'r', encoding='utf-8') as f:
            return [json.loads(line) for line in f if line.strip()]

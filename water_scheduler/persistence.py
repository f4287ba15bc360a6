"""Last-run persistence.

The last-run records survive restarts so a watering that already happened
today is not repeated and one that is still due is not skipped.

File format (JSON)::

    {
      "version": 1,
      "pumps": {
        "basil": {"date": "2026-10-19", "trigger": "08:00:00",
                  "completed_at": "2026-10-19T08:00:06"}
      }
    }

Writes go to a temporary file in the same directory which then replaces the
state file, so a crash mid-write leaves the previous state intact.
"""
import os
import json
import logging
import tempfile
from datetime import date, datetime, time
from typing import Dict, Mapping

from .errors import PersistenceError
from .schedule import LastRunRecord

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def record_to_dict(record: LastRunRecord) -> Dict[str, str]:
    data = {
        'date': record.date.isoformat(),
        'trigger': record.trigger.isoformat(),
    }
    if record.completed_at is not None:
        data['completed_at'] = record.completed_at.isoformat()
    return data


def record_from_dict(pump_id: str, data: Mapping[str, str]) -> LastRunRecord:
    completed_at = data.get('completed_at')
    return LastRunRecord(
        pump_id=pump_id,
        date=date.fromisoformat(data['date']),
        trigger=time.fromisoformat(data['trigger']),
        completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
    )


class LastRunStore:
    """JSON file holding one LastRunRecord per pump id."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> Dict[str, LastRunRecord]:
        """Read all records. A missing file means no pump has run yet.

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed
        """
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read last-run state {self.path}: {e}") from e

        try:
            pumps = data['pumps']
            return {pump_id: record_from_dict(pump_id, entry) for pump_id, entry in pumps.items()}
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise PersistenceError(f"Invalid last-run state in {self.path}: {e!r}") from e

    def load(self) -> Dict[str, LastRunRecord]:
        """Read all records, treating an unreadable file as empty."""
        try:
            records = self.read()
        except PersistenceError as e:
            logger.warning(f"{e} - treating all pumps as never run")
            return {}
        logger.info(f"Loaded last-run records for {len(records)} pumps from {self.path}")
        return records

    def save(self, records: Mapping[str, LastRunRecord]):
        """Atomically replace the state file.

        Raises:
            PersistenceError: If the file cannot be written
        """
        payload = {
            'version': STATE_VERSION,
            'pumps': {pump_id: record_to_dict(r) for pump_id, r in sorted(records.items())},
        }
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.last_run.', suffix='.tmp', dir=directory)
            with os.fdopen(fd, 'w') as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise PersistenceError(f"Cannot write last-run state {self.path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.debug(f"Saved last-run records for {len(records)} pumps to {self.path}")

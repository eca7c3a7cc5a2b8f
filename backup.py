"""
JSON backup format for the whole roster::

    {"students": [...], "exportDate": "<ISO-8601>", "version": "1.0"}

Imports only check that ``students`` is present and is a list of objects;
the fields of each record are taken as they are.
"""
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

from errors import ValidationError

BACKUP_VERSION = '1.0'


def build_backup(students: List[Dict], now: Optional[datetime] = None) -> Dict:
    now = now or datetime.now(timezone.utc)
    return {
        'students': list(students),
        'exportDate': now.isoformat(),
        'version': BACKUP_VERSION,
    }


def backup_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"students-backup-{now.strftime('%Y-%m-%d')}.json"


def parse_backup(payload) -> List[Dict]:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise ValidationError('students', 'Invalid file format. Please select a valid backup file.')

    if not isinstance(payload, dict) or not isinstance(payload.get('students'), list):
        raise ValidationError('students', 'Invalid file format. Please select a valid backup file.')
    if not all(isinstance(s, dict) for s in payload['students']):
        raise ValidationError('students', 'Every student in the backup must be an object')
    return payload['students']

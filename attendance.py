import logging
import time
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from errors import ValidationError

ATTENDANCE_STATUSES = ['present', 'absent', 'late', 'excused']


def _iso_date(value, field: str = 'date') -> str:
    if isinstance(value, date):
        return value.isoformat()
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date().isoformat()
    except ValueError:
        raise ValidationError(field, 'Date must be in YYYY-MM-DD format')


class AttendanceManager:
    """Daily attendance, one record per student per date."""

    def __init__(self, storage, today: Optional[Callable[[], date]] = None):
        self.logger = logging.getLogger(__name__)
        self.storage = storage
        self.today_func = today or date.today
        self.attendance: List[Dict] = []
        self._last_id = 0

    def load(self) -> List[Dict]:
        self.attendance = self.storage.load_all()
        return list(self.attendance)

    def _save(self, records: List[Dict]) -> None:
        self.storage.save_all(records)
        self.attendance = records

    def _next_id(self) -> str:
        self._last_id = max(time.time_ns() // 1_000_000, self._last_id + 1)
        return str(self._last_id)

    def today(self) -> str:
        return self.today_func().isoformat()

    def mark_attendance(self, student_id: str, day, status: str, marked_by: str) -> Dict:
        if not student_id:
            raise ValidationError('student_id', 'Student is required')
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError('status', f"Status must be one of: {', '.join(ATTENDANCE_STATUSES)}")
        day = _iso_date(day)

        record = {
            'id': self._next_id(),
            'student_id': student_id,
            'date': day,
            'status': status,
            'marked_by': marked_by,
            'marked_at': datetime.now().isoformat(timespec='seconds'),
        }

        # Replace any earlier mark for the same student and day
        records = [a for a in self.attendance
                   if not (a['student_id'] == student_id and a['date'] == day)]
        records.append(record)
        self._save(records)
        self.logger.info(f"Marked {student_id} {status} on {day}")
        return dict(record)

    def get_student_attendance(self, student_id: str, start_date=None, end_date=None) -> List[Dict]:
        records = [a for a in self.attendance if a['student_id'] == student_id]
        if start_date:
            start = _iso_date(start_date, 'start_date')
            records = [a for a in records if a['date'] >= start]
        if end_date:
            end = _iso_date(end_date, 'end_date')
            records = [a for a in records if a['date'] <= end]
        return sorted(records, key=lambda a: a['date'], reverse=True)

    def get_date_attendance(self, day) -> List[Dict]:
        day = _iso_date(day)
        return [a for a in self.attendance if a['date'] == day]

    def get_attendance_stats(self, student_id: str, start_date=None, end_date=None) -> Dict:
        records = self.get_student_attendance(student_id, start_date, end_date)

        stats = {'total': len(records)}
        for status in ATTENDANCE_STATUSES:
            stats[status] = sum(1 for a in records if a['status'] == status)

        # Late still counts as attended
        if stats['total']:
            stats['percentage'] = round((stats['present'] + stats['late']) / stats['total'] * 100, 1)
        else:
            stats['percentage'] = 0
        return stats

    def is_marked_today(self, student_id: str) -> bool:
        return self.get_today_status(student_id) is not None

    def get_today_status(self, student_id: str) -> Optional[str]:
        today = self.today()
        for a in self.attendance:
            if a['student_id'] == student_id and a['date'] == today:
                return a['status']
        return None

    def remove_student(self, student_id: str) -> int:
        records = [a for a in self.attendance if a['student_id'] != student_id]
        removed = len(self.attendance) - len(records)
        if removed:
            self._save(records)
        return removed

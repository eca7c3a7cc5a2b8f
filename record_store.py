import logging
import re
import time
import unicodedata
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from errors import DuplicateKeyError, NotFoundError, ValidationError
from validators import CLASS_LEVELS, SECTIONS, validate_student_fields

UNIQUE_KEYS = ('roll_no', 'admission_no')

# Set by the store or added to API responses, never taken from callers
READ_ONLY_KEYS = ('id', 'created_at', 'attendance_today')

SORT_KEYS = ['name-asc', 'name-desc', 'roll-asc', 'roll-desc', 'created-newest', 'created-oldest']
SORT_ALIASES = {
    'date-newest': 'created-newest',
    'date-oldest': 'created-oldest',
}


def natural_key(value: str) -> List:
    """Split text into text and number runs so '2' sorts before '10'."""
    parts = re.split(r'(\d+)', str(value).casefold())
    return [int(part) if i % 2 else part for i, part in enumerate(parts)]


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in decomposed if not unicodedata.combining(c))


def name_key(student: Dict) -> tuple:
    """Order like a dictionary: accents and case only break ties."""
    full_name = f"{student.get('first_name', '')} {student.get('last_name', '')}"
    return (fold_accents(full_name).casefold(), full_name.casefold(), full_name)


def id_number(student: Dict) -> int:
    digits = re.sub(r'\D', '', str(student.get('id', '')))
    return int(digits) if digits else 0


def matches_search(student: Dict, term: str) -> bool:
    full_name = f"{student.get('first_name', '')} {student.get('last_name', '')}"
    return (term in full_name.lower()
            or term in str(student.get('roll_no', '')).lower()
            or term in str(student.get('admission_no', '')).lower())


def filter_and_sort_students(students: List[Dict], search_term: Optional[str] = None,
                             class_level: Optional[str] = None, section: Optional[str] = None,
                             sort_key: Optional[str] = None) -> List[Dict]:
    """
    Filter students by search term, class and section, then apply one sort.

    Empty criteria are ignored. Without a sort key the filtered students keep
    their original order. The input list is not modified.
    """
    filtered = list(students)

    term = (search_term or '').strip().lower()
    if term:
        filtered = [s for s in filtered if matches_search(s, term)]

    if class_level:
        filtered = [s for s in filtered if str(s.get('class_level')) == str(class_level)]

    if section:
        filtered = [s for s in filtered if s.get('section') == section]

    if sort_key:
        sort_key = SORT_ALIASES.get(sort_key, sort_key)
        if sort_key not in SORT_KEYS:
            raise ValidationError('sort_key', f"Unknown sort option: {sort_key}")

        if sort_key.startswith('name'):
            filtered.sort(key=name_key, reverse=sort_key == 'name-desc')
        elif sort_key.startswith('roll'):
            filtered.sort(key=lambda s: natural_key(s.get('roll_no', '')), reverse=sort_key == 'roll-desc')
        else:
            filtered.sort(key=id_number, reverse=sort_key == 'created-newest')

    return filtered


def group_by_class(students: List[Dict]) -> List[Dict]:
    """Group students into class/section pairs, ordered by class then section."""
    groups: Dict = {}
    for student in students:
        key = (str(student.get('class_level', '')), str(student.get('section', '')))
        groups.setdefault(key, []).append(student)

    def group_order(key):
        class_level, section = key
        return (natural_key(class_level), section)

    result = []
    for class_level, section in sorted(groups, key=group_order):
        members = groups[(class_level, section)]
        members = sorted(members, key=lambda s: natural_key(s.get('roll_no', '')))
        result.append({
            'class_level': class_level,
            'section': section,
            'label': f"{class_level}-{section}",
            'count': len(members),
            'students': members,
        })
    return result


class RecordStore:
    """
    The authoritative student collection.

    Roll numbers and admission numbers are unique, compared without regard
    to case. Every mutation builds the new collection, saves it through the
    storage adapter, and only then replaces the in-memory copy, so a failed
    call leaves the roster as it was.
    """

    def __init__(self, storage, today: Optional[Callable[[], date]] = None):
        self.logger = logging.getLogger(__name__)
        self.storage = storage
        self.today = today or date.today
        self._students: List[Dict] = []
        self._last_id = 0

    def load(self) -> List[Dict]:
        """Read the persisted roster. A storage fault raises PersistenceError."""
        students = self.storage.load_all()
        self._students = [dict(s) for s in students]
        self._last_id = max((id_number(s) for s in self._students), default=0)
        self.logger.info(f"Loaded {len(self._students)} students")
        return self.list()

    def _next_id(self) -> str:
        candidate = time.time_ns() // 1_000_000
        self._last_id = max(candidate, self._last_id + 1)
        return str(self._last_id)

    def _index_of(self, student_id: str) -> int:
        for i, student in enumerate(self._students):
            if student.get('id') == student_id:
                return i
        return -1

    def _commit(self, students: List[Dict]) -> None:
        self.storage.save_all(students)
        self._students = students

    def is_key_unique(self, key: str, value: str, exclude_id: Optional[str] = None) -> bool:
        if key not in UNIQUE_KEYS:
            raise ValidationError('key', f"Not a unique key: {key}")
        wanted = str(value).strip().lower()
        return not any(
            str(s.get(key, '')).lower() == wanted and s.get('id') != exclude_id
            for s in self._students
        )

    def _check_unique(self, fields: Dict, exclude_id: Optional[str] = None) -> None:
        for key in UNIQUE_KEYS:
            if key in fields and not self.is_key_unique(key, fields[key], exclude_id):
                raise DuplicateKeyError(key, fields[key])

    def create(self, fields: Dict) -> Dict:
        cleaned = validate_student_fields(fields, self.today())
        self._check_unique(cleaned)

        student = dict(cleaned)
        student['id'] = self._next_id()
        student['created_at'] = datetime.now().isoformat(timespec='seconds')

        self._commit(self._students + [student])
        self.logger.info(f"Added student {student['id']} (roll {student['roll_no']})")
        return dict(student)

    def update(self, student_id: str, fields: Dict) -> Dict:
        index = self._index_of(student_id)
        if index == -1:
            raise NotFoundError('Student', student_id)

        changes = {k: v for k, v in fields.items() if k not in READ_ONLY_KEYS}
        cleaned = validate_student_fields(changes, self.today(), partial=True)
        self._check_unique(cleaned, exclude_id=student_id)

        student = dict(self._students[index])
        student.update(cleaned)
        student['id'] = student_id

        students = list(self._students)
        students[index] = student
        self._commit(students)
        self.logger.info(f"Updated student {student_id}")
        return dict(student)

    def delete(self, student_id: str) -> None:
        index = self._index_of(student_id)
        if index == -1:
            raise NotFoundError('Student', student_id)

        self._commit(self._students[:index] + self._students[index + 1:])
        self.logger.info(f"Deleted student {student_id}")

    def get(self, student_id: str) -> Optional[Dict]:
        index = self._index_of(student_id)
        return dict(self._students[index]) if index != -1 else None

    def list(self) -> List[Dict]:
        return [dict(s) for s in self._students]

    def __len__(self) -> int:
        return len(self._students)

    def filter_and_sort(self, search_term: Optional[str] = None, class_level: Optional[str] = None,
                        section: Optional[str] = None, sort_key: Optional[str] = None) -> List[Dict]:
        return filter_and_sort_students(self.list(), search_term, class_level, section, sort_key)

    def class_groups(self) -> List[Dict]:
        return group_by_class(self.list())

    def replace_all(self, students: List[Dict]) -> int:
        """Swap in a whole roster, as a backup import does. Records are not re-validated."""
        replacement = [dict(s) for s in students]
        self._last_id = max([self._last_id] + [id_number(s) for s in replacement])
        for student in replacement:
            if not student.get('id'):
                student['id'] = self._next_id()
        self._commit(replacement)
        self.logger.info(f"Replaced roster with {len(replacement)} students")
        return len(replacement)

    @staticmethod
    def options() -> Dict:
        return {'class_levels': CLASS_LEVELS, 'sections': SECTIONS, 'sort_keys': SORT_KEYS}

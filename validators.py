"""
Field validation for student records.

Each check raises ``ValidationError`` naming the offending field. Checks run
in form order so the first failing field is the one reported.
"""
import base64
import binascii
from datetime import date, datetime
from typing import Dict, Optional

from errors import ValidationError

CLASS_LEVELS = [str(level) for level in range(1, 13)]
SECTIONS = ['A', 'B', 'C', 'D']

REQUIRED_TEXT_FIELDS = [
    ('first_name', 'First Name'),
    ('last_name', 'Last Name'),
    ('roll_no', 'Roll Number'),
    ('admission_no', 'Admission Number'),
]

STUDENT_FIELDS = {
    'first_name', 'last_name', 'roll_no', 'admission_no',
    'class_level', 'section', 'date_of_birth', 'picture',
}

MIN_AGE_YEARS = 3
MAX_PICTURE_BYTES = 5 * 1024 * 1024


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def parse_date(value, field: str = 'date_of_birth') -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, 'Date of Birth is required')
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(field, 'Date of Birth must be a date in YYYY-MM-DD format')


def validate_required_text(fields: Dict, field: str, label: str) -> str:
    value = fields.get(field)
    if value is None or not str(value).strip():
        raise ValidationError(field, f"{label} is required")
    return str(value).strip()


def validate_choice(fields: Dict, field: str, label: str, choices) -> str:
    value = fields.get(field)
    value = '' if value is None else str(value).strip()
    if value not in choices:
        raise ValidationError(field, f"Please select a {label}")
    return value


def validate_date_of_birth(value, today: date) -> str:
    """Date of birth must be in the past and give an age of at least 3 years."""
    born = parse_date(value)
    if born >= today:
        raise ValidationError('date_of_birth', 'Date of Birth must be in the past')
    if born > years_before(today, MIN_AGE_YEARS):
        raise ValidationError('date_of_birth', f"Student must be at least {MIN_AGE_YEARS} years old")
    return born.isoformat()


def validate_picture(value) -> Optional[str]:
    """Pictures are inline image data URLs capped at 5 MiB of decoded data."""
    if value is None or value == '':
        return None
    if not isinstance(value, str) or not value.startswith('data:image/'):
        raise ValidationError('picture', 'Picture must be an image')
    header, _, payload = value.partition(',')
    if not header.endswith(';base64') or not payload:
        raise ValidationError('picture', 'Picture must be base64 encoded')
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError('picture', 'Picture must be base64 encoded')
    if len(raw) > MAX_PICTURE_BYTES:
        raise ValidationError('picture', 'Picture must be smaller than 5MB')
    return value


def validate_student_fields(fields: Dict, today: date, partial: bool = False) -> Dict:
    """
    Validate and normalise student fields.

    With ``partial`` only the supplied fields are checked, which is how edits
    are validated. Returns a new dict of cleaned values.
    """
    for name in fields:
        if name not in STUDENT_FIELDS:
            raise ValidationError(name, f"Unknown field: {name}")

    cleaned = {}
    for field, label in REQUIRED_TEXT_FIELDS:
        if partial and field not in fields:
            continue
        cleaned[field] = validate_required_text(fields, field, label)

    if not partial or 'class_level' in fields:
        cleaned['class_level'] = validate_choice(fields, 'class_level', 'class', CLASS_LEVELS)
    if not partial or 'section' in fields:
        cleaned['section'] = validate_choice(fields, 'section', 'section', SECTIONS)
    if not partial or 'date_of_birth' in fields:
        cleaned['date_of_birth'] = validate_date_of_birth(fields.get('date_of_birth'), today)
    if not partial or 'picture' in fields:
        cleaned['picture'] = validate_picture(fields.get('picture'))

    return cleaned

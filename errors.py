"""
Error types raised by the roster core.

Every error carries a ``kind`` so the web layer can render a specific
message without inspecting the message text.
"""
from typing import Dict, Optional


class RosterError(Exception):
    kind = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {'error': self.message, 'kind': self.kind}


class ValidationError(RosterError):
    """A required field is missing or ill-formed."""
    kind = 'validation'

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['field'] = self.field
        return data


class DuplicateKeyError(ValidationError):
    """A roll number or admission number is already taken."""
    kind = 'duplicate_key'

    LABELS = {
        'roll_no': 'Roll Number',
        'admission_no': 'Admission Number',
    }

    def __init__(self, key: str, value: str):
        label = self.LABELS.get(key, key)
        super().__init__(key, f"{label} '{value}' already exists")
        self.key = key
        self.value = value


class NotFoundError(RosterError):
    kind = 'not_found'

    def __init__(self, resource: str, identifier: Optional[str]):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class PersistenceError(RosterError):
    """The storage adapter could not load or save."""
    kind = 'persistence'

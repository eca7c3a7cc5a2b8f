from datetime import date

import pytest

from app import create_app
from errors import PersistenceError
from record_store import RecordStore
from storage import MemoryStorage

TODAY = date(2026, 10, 17)


class FlakyStorage(MemoryStorage):
    """Memory storage that can be told to fail."""

    def __init__(self, records=None):
        super().__init__(records)
        self.fail_load = False
        self.fail_save = False

    def load_all(self):
        if self.fail_load:
            raise PersistenceError('disk unavailable')
        return super().load_all()

    def save_all(self, records):
        if self.fail_save:
            raise PersistenceError('disk full')
        super().save_all(records)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def student_fields():
    counter = {'n': 0}

    def make(**overrides):
        counter['n'] += 1
        fields = {
            'first_name': 'Student',
            'last_name': f"Number{counter['n']}",
            'roll_no': f"R{counter['n']}",
            'admission_no': f"ADM{counter['n']:04d}",
            'class_level': '5',
            'section': 'A',
            'date_of_birth': '2015-06-01',
        }
        fields.update(overrides)
        return fields

    return make


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def store(storage):
    store = RecordStore(storage, today=lambda: TODAY)
    store.load()
    return store


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'DATA_FOLDER': str(tmp_path / 'data'),
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'EXPORT_FOLDER': str(tmp_path / 'exports'),
        'STORAGE_MODE': 'local',
        'TODAY': lambda: TODAY,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post('/api/login', json={'username': 'admin', 'password': 'admin123'})
    assert response.status_code == 200
    return client


@pytest.fixture
def teacher_client(client):
    response = client.post('/api/login', json={'username': 'teacher', 'password': 'teacher123'})
    assert response.status_code == 200
    return client

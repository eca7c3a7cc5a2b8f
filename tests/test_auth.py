import pytest

from auth import AuthManager, has_permission, role_display
from errors import NotFoundError, ValidationError
from storage import MemoryStorage


@pytest.fixture
def auth():
    manager = AuthManager(MemoryStorage())
    manager.load()
    return manager


def new_user(**overrides):
    data = {'username': 'priya', 'password': 'secret', 'role': 'teacher',
            'name': 'Priya Shah', 'email': 'priya@school.com'}
    data.update(overrides)
    return data


def test_default_accounts_are_seeded(auth):
    users = auth.all_users()
    assert [u['username'] for u in users] == ['admin', 'teacher']
    assert all('password_hash' not in u for u in users)


def test_seeded_accounts_are_saved(auth):
    assert len(auth.storage.load_all()) == 2
    assert auth.storage.load_all()[0]['password_hash'] != 'admin123'


def test_authenticate(auth):
    user = auth.authenticate('admin', 'admin123')
    assert user['role'] == 'admin'
    assert 'password_hash' not in user

    assert auth.authenticate('admin', 'wrong') is None
    assert auth.authenticate('ghost', 'admin123') is None


def test_permissions_by_role():
    admin = {'role': 'admin'}
    teacher = {'role': 'teacher'}

    assert has_permission(admin, 'manage_users')
    assert has_permission(teacher, 'attendance')
    assert not has_permission(teacher, 'delete')
    assert not has_permission({'role': 'student'}, 'view')
    assert not has_permission(None, 'view')
    assert role_display('teacher') == 'Teacher'
    assert role_display('janitor') == 'Unknown'


def test_add_user_and_login(auth):
    user = auth.add_user(new_user(), created_by='Administrator')
    assert user['created_by'] == 'Administrator'
    assert auth.authenticate('priya', 'secret')['id'] == user['id']


@pytest.mark.parametrize('overrides, field', [
    ({'username': 'ADMIN'}, 'username'),
    ({'email': 'Admin@School.com'}, 'email'),
    ({'role': 'principal'}, 'role'),
    ({'password': ''}, 'password'),
])
def test_add_user_rejects_bad_data(auth, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        auth.add_user(new_user(**overrides))
    assert excinfo.value.field == field
    assert len(auth.users) == 2


def test_uniqueness_checks_exclude_self(auth):
    assert not auth.is_username_unique('Teacher')
    assert auth.is_username_unique('Teacher', exclude_id='2')
    assert auth.is_email_unique('new@school.com')


def test_delete_user_rules(auth):
    user = auth.add_user(new_user())

    with pytest.raises(ValidationError):
        auth.delete_user('1', current_user_id='2')
    with pytest.raises(ValidationError):
        auth.delete_user('2', current_user_id='2')
    with pytest.raises(NotFoundError):
        auth.delete_user('999', current_user_id='1')

    auth.delete_user(user['id'], current_user_id='1')
    assert auth.get_user(user['id']) is None


def test_users_added_together_get_distinct_ids(auth):
    first = auth.add_user(new_user())
    second = auth.add_user(new_user(username='ravi', email='ravi@school.com'))

    assert first['id'] != second['id']
    assert int(second['id']) > int(first['id'])

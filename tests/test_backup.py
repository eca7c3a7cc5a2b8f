import json
from datetime import datetime, timezone

import pytest

from backup import backup_filename, build_backup, parse_backup
from errors import ValidationError


def test_build_backup_format():
    now = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)
    data = build_backup([{'id': '1'}], now=now)

    assert data == {
        'students': [{'id': '1'}],
        'exportDate': '2026-10-17T09:30:00+00:00',
        'version': '1.0',
    }
    assert backup_filename(now) == 'students-backup-2026-10-17.json'


def test_parse_backup_accepts_dict_and_text():
    payload = {'students': [{'id': '1'}], 'version': '1.0'}
    assert parse_backup(payload) == [{'id': '1'}]
    assert parse_backup(json.dumps(payload)) == [{'id': '1'}]
    assert parse_backup(json.dumps(payload).encode()) == [{'id': '1'}]


@pytest.mark.parametrize('payload', [
    {'version': '1.0'},
    {'students': 'everyone'},
    [{'id': '1'}],
    {'students': [1, 2]},
    {'students': [{'id': '1'}, 'Ann']},
    '{broken json',
    None,
])
def test_parse_backup_rejects_bad_payloads(payload):
    with pytest.raises(ValidationError) as excinfo:
        parse_backup(payload)
    assert excinfo.value.field == 'students'


def test_rejected_import_leaves_roster_unchanged(store, student_fields):
    store.create(student_fields())
    before = store.list()

    with pytest.raises(ValidationError):
        store.replace_all(parse_backup({'exportDate': '2026-10-17'}))

    assert store.list() == before


def test_export_then_import_restores_roster(store, student_fields):
    store.create(student_fields(first_name='Ann'))
    store.create(student_fields(first_name='Bob'))
    backup = build_backup(store.list())

    store.replace_all([])
    store.replace_all(parse_backup(json.dumps(backup)))

    assert [s['first_name'] for s in store.list()] == ['Ann', 'Bob']

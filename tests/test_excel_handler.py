import openpyxl
import pandas as pd

from create_test_data import create_sample_students, create_sample_workbook
from excel_handler import ExcelHandler


def write_sheet(path, rows):
    pd.DataFrame(rows).to_excel(path, index=False, engine='openpyxl')
    return str(path)


def test_read_student_data_maps_column_aliases(tmp_path):
    path = write_sheet(tmp_path / 'roster.xlsx', [
        {'Name': 'Ann Lee', 'Roll': 7, 'Admission Number': 'A-1', 'Class': 5, 'Sec': 'a', 'DOB': '2015-06-01'},
        {'Name': 'Bob Van Dyke', 'Roll': 8, 'Admission Number': 'A-2', 'Class': 5, 'Sec': 'B', 'DOB': '2015-07-01'},
        {'Name': 'Dup Roll', 'Roll': 8, 'Admission Number': 'A-3', 'Class': 5, 'Sec': 'B', 'DOB': '2015-07-01'},
    ])

    df = ExcelHandler(str(tmp_path)).read_student_data(path)

    rows = df.to_dict('records')
    assert len(rows) == 2
    assert rows[0] == {
        'first_name': 'Ann', 'last_name': 'Lee', 'roll_no': '7', 'admission_no': 'A-1',
        'class_level': '5', 'section': 'A', 'date_of_birth': '2015-06-01',
    }
    assert rows[1]['last_name'] == 'Van Dyke'


def test_read_student_data_missing_columns_returns_none(tmp_path):
    path = write_sheet(tmp_path / 'roster.xlsx', [{'Name': 'Ann Lee', 'Roll': 7}])
    assert ExcelHandler(str(tmp_path)).read_student_data(path) is None


def test_export_students_writes_workbook(tmp_path, today):
    students = [dict(s, id=str(i), created_at='2026-10-17T09:00:00')
                for i, s in enumerate(create_sample_students(5, seed=1, today=today))]

    filepath = ExcelHandler(str(tmp_path / 'exports')).export_students(students, 'roster.xlsx')

    ws = openpyxl.load_workbook(filepath).active
    assert ws['A1'].value == 'Student Roster'
    assert ws['A4'].value == 'Roll Number'
    assert [ws.cell(row=5 + i, column=1).value for i in range(5)] == [s['roll_no'] for s in students]


def test_export_attendance_writes_summary(tmp_path):
    rows = [
        {'roll_no': '1', 'first_name': 'Ann', 'last_name': 'Lee', 'class_level': '5', 'section': 'A',
         'status': 'present', 'marked_by': 'John Teacher'},
        {'roll_no': '2', 'first_name': 'Bob', 'last_name': 'Ann', 'class_level': '5', 'section': 'A',
         'status': None, 'marked_by': None},
    ]

    filepath = ExcelHandler(str(tmp_path)).export_attendance('2026-10-17', rows)

    ws = openpyxl.load_workbook(filepath).active
    values = [cell.value for row in ws.iter_rows() for cell in row if cell.value]
    assert 'Present' in values
    assert 'Not marked' in values
    assert 'Present: 1' in values


def test_sample_students_are_valid_for_the_store(store, today):
    students = create_sample_students(40, seed=7, today=today)

    for fields in students:
        store.create(fields)

    assert len(store) == 40


def test_sample_workbook_round_trips_through_reader(tmp_path):
    path = create_sample_workbook(str(tmp_path / 'sample.xlsx'), count=10, seed=3)
    df = ExcelHandler(str(tmp_path)).read_student_data(path)
    assert len(df) == 10


def test_rows_without_a_name_are_skipped(tmp_path):
    path = write_sheet(tmp_path / 'roster.xlsx', [
        {'Name': 'Ann Lee', 'Roll': 7, 'Admission Number': 'A-1', 'Class': 5, 'Section': 'A', 'DOB': '2015-06-01'},
        {'Name': None, 'Roll': 8, 'Admission Number': 'A-2', 'Class': 5, 'Section': 'A', 'DOB': '2015-06-01'},
        {'Name': '   ', 'Roll': 9, 'Admission Number': 'A-3', 'Class': 5, 'Section': 'A', 'DOB': '2015-06-01'},
    ])

    df = ExcelHandler(str(tmp_path)).read_student_data(path)

    assert df['roll_no'].tolist() == ['7']
    assert 'nan' not in df['first_name'].tolist()


def test_sample_numbering_continues_after_start(today):
    first = create_sample_students(5, seed=3, today=today)
    second = create_sample_students(5, seed=3, today=today, start=len(first))

    assert not {s['roll_no'] for s in first} & {s['roll_no'] for s in second}
    assert not {s['admission_no'] for s in first} & {s['admission_no'] for s in second}

import os
import logging
from functools import wraps
from flask import Flask, request, jsonify, send_file, session, g, current_app
from werkzeug.utils import secure_filename
from attendance import AttendanceManager, ATTENDANCE_STATUSES
from auth import AuthManager, ROLE_PERMISSIONS, has_permission, role_display
from backup import build_backup, backup_filename, parse_backup
from create_test_data import MAX_SAMPLE_STUDENTS, create_sample_students
from errors import RosterError, ValidationError, NotFoundError, PersistenceError
from excel_handler import ExcelHandler
from record_store import RecordStore
from storage import MemoryStorage, JsonFileStorage, build_storage

# Set up logging
logging.basicConfig(level=logging.DEBUG)


class RosterContext:
    """
    Everything the roster app holds between requests.

    Built once per app by ``create_app`` and kept in
    ``app.extensions['roster']``. Collections are loaded lazily so a storage
    fault is reported on the request that hit it instead of showing an
    empty roster.
    """

    def __init__(self, store, attendance, auth, excel_handler):
        self.store = store
        self.attendance = attendance
        self.auth = auth
        self.excel_handler = excel_handler
        self.loaded = False

    def ensure_loaded(self):
        if not self.loaded:
            self.store.load()
            self.attendance.load()
            self.auth.load()
            self.loaded = True


def build_context(config):
    data_folder = config['DATA_FOLDER']
    mode = config['STORAGE_MODE']
    student_storage = build_storage(mode, os.path.join(data_folder, 'students-data.json'),
                                    config.get('API_BASE_URL'))
    if hasattr(student_storage, 'on_fallback'):
        student_storage.on_fallback(
            lambda error: logging.warning(f"Student storage switched to local file: {error.message}")
        )

    if mode == 'memory':
        attendance_storage, user_storage = MemoryStorage(), MemoryStorage()
    else:
        attendance_storage = JsonFileStorage(os.path.join(data_folder, 'attendance.json'))
        user_storage = JsonFileStorage(os.path.join(data_folder, 'users.json'))

    today = config.get('TODAY')
    return RosterContext(
        RecordStore(student_storage, today=today),
        AttendanceManager(attendance_storage, today=today),
        AuthManager(user_storage),
        ExcelHandler(config['EXPORT_FOLDER']),
    )


def roster():
    return current_app.extensions['roster']


def login_required(permission=None):
    def deco(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            if not current_app.config['LOGIN_REQUIRED']:
                return f(*args, **kwargs)
            if g.user is None:
                return jsonify({'error': 'Please login first', 'kind': 'unauthorized'}), 401
            if permission and not has_permission(g.user, permission):
                return jsonify({'error': 'Access denied', 'kind': 'forbidden'}), 403
            return f(*args, **kwargs)
        return wrapped
    return deco


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('body', 'Request body must be a JSON object')
    return data


def create_app(test_config=None):
    app = Flask(__name__)

    # Configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SESSION_SECRET", "dev-secret-key-change-in-production"),
        DATA_FOLDER=os.environ.get("DATA_FOLDER", 'data'),
        UPLOAD_FOLDER='uploads',
        EXPORT_FOLDER='exports',
        ALLOWED_EXTENSIONS={'xlsx', 'xls'},
        MAX_CONTENT_LENGTH=16 * 1024 * 1024,  # 16MB max upload size
        STORAGE_MODE=os.environ.get("STORAGE_MODE", 'local'),
        API_BASE_URL=os.environ.get("API_BASE_URL"),
        LOGIN_REQUIRED=True,
        TODAY=None,
    )
    if test_config:
        app.config.update(test_config)

    # Ensure directories exist
    for folder in ('DATA_FOLDER', 'UPLOAD_FOLDER', 'EXPORT_FOLDER'):
        os.makedirs(app.config[folder], exist_ok=True)

    app.extensions['roster'] = build_context(app.config)

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify(e.to_dict()), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify(e.to_dict()), 404

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(e):
        logging.error(f"Storage error: {e.message}")
        return jsonify(e.to_dict()), 500


def register_routes(app):
    @app.before_request
    def load_roster():
        roster().ensure_loaded()
        user_id = session.get('user_id')
        g.user = roster().auth.get_user(user_id) if user_id else None

    @app.route('/')
    def index():
        return jsonify({'message': 'Student Roster Manager API', 'students': len(roster().store)})

    @app.route('/api/options')
    def options():
        data = RecordStore.options()
        data['attendance_statuses'] = ATTENDANCE_STATUSES
        data['roles'] = sorted(ROLE_PERMISSIONS)
        return jsonify(data)

    # Login

    @app.route('/api/login', methods=['POST'])
    def login():
        data = json_body()
        user = roster().auth.authenticate(data.get('username', ''), data.get('password', ''))
        if not user:
            return jsonify({'error': 'Invalid username or password', 'kind': 'unauthorized'}), 401
        session.clear()
        session['user_id'] = user['id']
        user['role_display'] = role_display(user['role'])
        return jsonify({'success': True, 'user': user})

    @app.route('/api/logout', methods=['POST'])
    def logout():
        session.clear()
        return jsonify({'success': True})

    @app.route('/api/me')
    @login_required()
    def me():
        user = dict(g.user) if g.user else None
        if user:
            user['role_display'] = role_display(user['role'])
            user['permissions'] = ROLE_PERMISSIONS.get(user['role'], [])
        return jsonify({'user': user})

    # Students

    @app.route('/api/students', methods=['GET'])
    @login_required('view')
    def list_students():
        args = request.args
        students = roster().store.filter_and_sort(
            search_term=args.get('search'),
            class_level=args.get('class_level') or args.get('class'),
            section=args.get('section'),
            sort_key=args.get('sort'),
        )
        return jsonify(students)

    @app.route('/api/students', methods=['POST'])
    @login_required('add')
    def add_student():
        student = roster().store.create(json_body())
        return jsonify(student), 201

    @app.route('/api/students', methods=['PUT'])
    @login_required('delete')
    def replace_students():
        data = request.get_json(silent=True)
        if not isinstance(data, list):
            raise ValidationError('students', 'Request body must be a list of students')
        count = roster().store.replace_all(parse_backup({'students': data}))
        return jsonify({'success': True, 'count': count})

    @app.route('/api/students/unique')
    @login_required('view')
    def check_unique():
        key = request.args.get('key', '')
        value = request.args.get('value', '')
        unique = roster().store.is_key_unique(key, value, request.args.get('exclude_id') or None)
        return jsonify({'key': key, 'value': value, 'unique': unique})

    @app.route('/api/students/<student_id>', methods=['GET'])
    @login_required('view')
    def get_student(student_id):
        student = roster().store.get(student_id)
        if student is None:
            raise NotFoundError('Student', student_id)
        student['attendance_today'] = roster().attendance.get_today_status(student_id)
        return jsonify(student)

    @app.route('/api/students/<student_id>', methods=['PUT'])
    @login_required('edit')
    def update_student(student_id):
        student = roster().store.update(student_id, json_body())
        return jsonify(student)

    @app.route('/api/students/<student_id>', methods=['DELETE'])
    @login_required('delete')
    def delete_student(student_id):
        roster().store.delete(student_id)
        roster().attendance.remove_student(student_id)
        return jsonify({'message': 'Student deleted successfully'})

    @app.route('/api/classes')
    @login_required('view')
    def list_classes():
        return jsonify(roster().store.class_groups())

    # Backup and spreadsheets

    @app.route('/api/export')
    @login_required('reports')
    def export_backup():
        response = jsonify(build_backup(roster().store.list()))
        response.headers['Content-Disposition'] = f'attachment; filename={backup_filename()}'
        return response

    @app.route('/api/import', methods=['POST'])
    @login_required('delete')
    def import_backup():
        if 'file' in request.files:
            payload = request.files['file'].read()
        else:
            payload = request.get_json(silent=True)
        students = parse_backup(payload)
        count = roster().store.replace_all(students)
        return jsonify({'success': True, 'count': count, 'message': 'Data imported successfully!'})

    @app.route('/api/export_students')
    @login_required('reports')
    def export_students():
        students = roster().store.list()
        if not students:
            return jsonify({'error': 'No student data to export', 'kind': 'validation'}), 400

        filepath = roster().excel_handler.export_students(students)
        if not filepath:
            return jsonify({'error': 'Error exporting students', 'kind': 'export'}), 500
        return send_file(os.path.abspath(filepath), as_attachment=True,
                         download_name=os.path.basename(filepath))

    @app.route('/api/upload_students', methods=['POST'])
    @login_required('add')
    def upload_students():
        try:
            if 'file' not in request.files or request.files['file'].filename == '':
                return jsonify({'error': 'No file selected', 'kind': 'validation'}), 400

            file = request.files['file']
            if not allowed_file(file.filename):
                return jsonify({'error': 'Invalid file type. Please upload an Excel file (.xlsx or .xls)',
                                'kind': 'validation'}), 400

            filename = secure_filename(file.filename)
            filepath = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)
            file.save(filepath)

            students_df = roster().excel_handler.read_student_data(filepath)
            if students_df is None:
                return jsonify({'error': 'Error processing Excel file. Please check the format.',
                                'kind': 'validation'}), 400

            added = 0
            skipped = []
            for row in students_df.to_dict('records'):
                try:
                    roster().store.create(row)
                    added += 1
                except ValidationError as e:
                    skipped.append({'roll_no': row.get('roll_no'), 'field': e.field, 'error': e.message})

            return jsonify({'added': added, 'skipped': skipped,
                            'message': f'Successfully uploaded {added} students ({len(skipped)} skipped)'})

        except RosterError:
            raise
        except Exception as e:
            logging.error(f"Error uploading file: {str(e)}")
            return jsonify({'error': f'Error uploading file: {str(e)}', 'kind': 'upload'}), 500

    @app.route('/api/load_sample_data', methods=['POST'])
    @login_required('add')
    def load_sample_data():
        data = request.get_json(silent=True) or {}
        try:
            count = int(data.get('count', 60))
        except (TypeError, ValueError):
            raise ValidationError('count', 'Count must be a number')
        if not 1 <= count <= MAX_SAMPLE_STUDENTS:
            raise ValidationError('count', f"Count must be between 1 and {MAX_SAMPLE_STUDENTS}")
        store = roster().store
        added = 0
        for fields in create_sample_students(count, seed=data.get('seed'), today=store.today(), start=len(store)):
            try:
                store.create(fields)
                added += 1
            except ValidationError as e:
                logging.debug(f"Skipped sample student {fields['roll_no']}: {e.message}")
        return jsonify({'added': added, 'message': f'Sample data loaded: {added} students'})

    # Attendance

    def attendance_rows(day):
        marks = {a['student_id']: a for a in roster().attendance.get_date_attendance(day)}
        rows = []
        for student in roster().store.filter_and_sort(sort_key='roll-asc'):
            mark = marks.get(student.get('id'), {})
            rows.append({
                'student_id': student.get('id'),
                'roll_no': student.get('roll_no', ''),
                'first_name': student.get('first_name', ''),
                'last_name': student.get('last_name', ''),
                'class_level': student.get('class_level', ''),
                'section': student.get('section', ''),
                'status': mark.get('status'),
                'marked_by': mark.get('marked_by'),
            })
        return rows

    @app.route('/api/attendance', methods=['POST'])
    @login_required('attendance')
    def mark_attendance():
        data = json_body()
        student_id = data.get('student_id')
        if roster().store.get(student_id) is None:
            raise NotFoundError('Student', student_id)
        marked_by = g.user['name'] if g.user else 'System'
        record = roster().attendance.mark_attendance(
            student_id, data.get('date') or roster().attendance.today(), data.get('status'), marked_by
        )
        return jsonify(record), 201

    @app.route('/api/attendance', methods=['GET'])
    @login_required('attendance')
    def date_attendance():
        day = request.args.get('date') or roster().attendance.today()
        rows = attendance_rows(day)
        summary = {status: sum(1 for r in rows if r['status'] == status) for status in ATTENDANCE_STATUSES}
        summary['not_marked'] = sum(1 for r in rows if r['status'] is None)
        return jsonify({'date': day, 'students': rows, 'summary': summary})

    @app.route('/api/attendance/export')
    @login_required('reports')
    def export_attendance():
        day = request.args.get('date') or roster().attendance.today()
        rows = attendance_rows(day)
        filepath = roster().excel_handler.export_attendance(day, rows)
        if not filepath:
            return jsonify({'error': 'Error exporting attendance', 'kind': 'export'}), 500
        return send_file(os.path.abspath(filepath), as_attachment=True,
                         download_name=os.path.basename(filepath))

    @app.route('/api/students/<student_id>/attendance')
    @login_required('attendance')
    def student_attendance(student_id):
        if roster().store.get(student_id) is None:
            raise NotFoundError('Student', student_id)
        records = roster().attendance.get_student_attendance(
            student_id, request.args.get('start'), request.args.get('end')
        )
        return jsonify(records)

    @app.route('/api/students/<student_id>/attendance/stats')
    @login_required('reports')
    def student_attendance_stats(student_id):
        if roster().store.get(student_id) is None:
            raise NotFoundError('Student', student_id)
        stats = roster().attendance.get_attendance_stats(
            student_id, request.args.get('start'), request.args.get('end')
        )
        return jsonify(stats)

    # Users

    @app.route('/api/users', methods=['GET'])
    @login_required('manage_users')
    def list_users():
        return jsonify(roster().auth.all_users())

    @app.route('/api/users', methods=['POST'])
    @login_required('manage_users')
    def add_user():
        created_by = g.user['name'] if g.user else 'System'
        user = roster().auth.add_user(json_body(), created_by=created_by)
        return jsonify(user), 201

    @app.route('/api/users/<user_id>', methods=['DELETE'])
    @login_required('manage_users')
    def delete_user(user_id):
        current_id = g.user['id'] if g.user else None
        roster().auth.delete_user(user_id, current_user_id=current_id)
        return jsonify({'success': True})


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=int(os.environ.get("PORT", 5000)), debug=True)

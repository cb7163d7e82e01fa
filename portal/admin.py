"""
Administrative records: students, faculty, subjects and portal users.

Reads need a login; writes need an admin (except merging grades, which
faculty do after saving a result).
"""
from flask import Blueprint, request, current_app
from flask_login import login_required, current_user
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from portal import db
from portal.auth import admin_required, log_audit_event
from portal.models import (
    User, UserRole, ProcessedResult, Student, Faculty, FacultyStudy,
    Subject, SubjectFaculty, STUDENT_DEPARTMENTS, FACULTY_DEPARTMENTS,
)
from portal.utils.responses import json_response, error_response, paginate_args, pagination_meta

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')
students_bp = Blueprint('students', __name__, url_prefix='/api/students')
faculty_bp = Blueprint('faculty', __name__, url_prefix='/api/faculty')
subjects_bp = Blueprint('subjects', __name__, url_prefix='/api/subjects')

STUDENT_UNIQUE = {
    'email': 'email',
    'rollNumber': 'roll number',
    'registerNumber': 'register number',
    'aadhaarNumber': 'aadhaar number',
    'mobileNumber': 'mobile number',
}


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _object_entries(entries, label):
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ValueError(f"{label} must be a list of objects")
    return entries


def _commit(record, message, status=200, event=None):
    """Commit pending changes; validation and uniqueness errors become 400s"""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response("A record with the same unique value already exists", 400)
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    if event:
        log_audit_event(event, message)
    return json_response(record.to_dict(), message, status)


def _duplicate_field(model, data, fields, exclude_id=None):
    """First camelCase field in `fields` whose value already exists on another row"""
    for key, label in fields.items():
        value = data.get(key)
        if value in (None, ''):
            continue
        column = getattr(model, model.FIELDS[key])
        value = str(value).strip()
        if key in ('rollNumber', 'registerNumber'):
            value = value.upper()
        elif key == 'email':
            value = value.lower()
        query = model.query.filter(column == value)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if query.first():
            return label
    return None


def _department_or_400(department, allowed):
    dept = (department or '').strip().upper()
    if dept not in allowed:
        return None, error_response(f"Invalid department. Must be one of: {', '.join(allowed)}", 400)
    return dept, None


# ============ Students ============

@students_bp.route('/', methods=['GET'])
@login_required
def list_students():
    page, limit = paginate_args(request)
    query = Student.query
    if request.args.get('department'):
        query = query.filter(Student.department == request.args['department'].strip().upper())
    total = query.count()
    students = query.order_by(Student.register_number).offset((page - 1) * limit).limit(limit).all()
    return json_response([s.to_dict() for s in students], "Students retrieved",
                         pagination=pagination_meta(page, limit, total))


@students_bp.route('/departments', methods=['GET'])
@login_required
def student_departments():
    rows = (
        db.session.query(Student.department, func.count(Student.id))
        .group_by(Student.department)
        .order_by(Student.department)
        .all()
    )
    return json_response([{"department": d, "count": c} for d, c in rows], "Departments retrieved")


@students_bp.route('/search', methods=['GET'])
@login_required
def search_students():
    name = (request.args.get('name') or '').strip()
    if len(name) < 2:
        return error_response("Search term must be at least 2 characters", 400)
    query = Student.query.filter(Student.name.ilike(f"%{name}%"))
    if request.args.get('department'):
        query = query.filter(Student.department == request.args['department'].strip().upper())
    students = query.order_by(Student.name).limit(100).all()
    return json_response([s.to_dict() for s in students], f"Found {len(students)} students")


@students_bp.route('/department/<department>', methods=['GET'])
@login_required
def students_by_department(department):
    dept, err = _department_or_400(department, STUDENT_DEPARTMENTS)
    if err:
        return err
    students = Student.query.filter_by(department=dept).order_by(Student.register_number).all()
    return json_response([s.to_dict() for s in students], f"Students in {dept} retrieved")


@students_bp.route('/register/<register_number>', methods=['GET'])
@login_required
def student_by_register_number(register_number):
    student = Student.query.filter_by(register_number=register_number.strip().upper()).first()
    if student is None:
        return error_response("Student not found", 404)
    return json_response(student.to_dict(), "Student retrieved")


@students_bp.route('/', methods=['POST'])
@admin_required
def create_student():
    data = _json_body()
    missing = [f for f in Student.REQUIRED if data.get(f) in (None, '')]
    if missing:
        return error_response(f"Missing required fields: {', '.join(missing)}", 400)

    duplicate = _duplicate_field(Student, data, STUDENT_UNIQUE)
    if duplicate:
        return error_response(f"Student with this {duplicate} already exists", 400)

    try:
        student = Student()
        student.update_from_dict(data)
        if isinstance(data.get('grades'), dict):
            student.merge_grades(data['grades'])
    except ValueError as e:
        return error_response(str(e), 400)

    db.session.add(student)
    current_app.logger.info("Creating student %s", student.register_number)
    return _commit(student, "Student created successfully", 201, event='student_created')


@students_bp.route('/<int:student_id>', methods=['PUT'])
@admin_required
def update_student(student_id):
    student = db.session.get(Student, student_id)
    if student is None:
        return error_response("Student not found", 404)

    data = _json_body()
    duplicate = _duplicate_field(Student, data, STUDENT_UNIQUE, exclude_id=student_id)
    if duplicate:
        return error_response(f"Student with this {duplicate} already exists", 400)

    try:
        student.update_from_dict(data)
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    return _commit(student, "Student updated successfully", event='student_updated')


@students_bp.route('/<int:student_id>', methods=['DELETE'])
@admin_required
def delete_student(student_id):
    student = db.session.get(Student, student_id)
    if student is None:
        return error_response("Student not found", 404)
    register_number = student.register_number
    db.session.delete(student)
    db.session.commit()
    log_audit_event('student_deleted', f'Deleted student {register_number}')
    return json_response({"id": student_id}, "Student deleted successfully")


@students_bp.route('/<int:student_id>/grades', methods=['PUT'])
@login_required
def update_student_grades(student_id):
    student = db.session.get(Student, student_id)
    if student is None:
        return error_response("Student not found", 404)

    grades = _json_body().get('grades')
    if not isinstance(grades, dict) or not grades:
        return error_response("grades must be a non-empty object of subject code to grade", 400)
    student.merge_grades(grades)
    return _commit(student, "Grades updated successfully")


# ============ Faculty ============

def _apply_studies(faculty, studies):
    studies = _object_entries(studies, "studies")
    faculty.studies = [
        FacultyStudy(
            degree=s.get('degree'),
            specialization=s.get('specialization'),
            institution=s.get('institution'),
            year=s.get('year'),
        )
        for s in studies
    ]


@faculty_bp.route('/', methods=['POST'])
@admin_required
def create_faculty():
    data = _json_body()
    missing = [f for f in ('title', 'name', 'initials', 'department') if not data.get(f)]
    if missing:
        return error_response(f"Missing required fields: {', '.join(missing)}", 400)

    duplicate = _duplicate_field(Faculty, data, {'email': 'email', 'employeeId': 'employee ID'})
    if duplicate:
        return error_response(f"Faculty with this {duplicate} already exists", 400)

    try:
        faculty = Faculty(created_by=current_user.id)
        faculty.update_from_dict(data)
        if 'studies' in data:
            _apply_studies(faculty, data['studies'])
    except ValueError as e:
        return error_response(str(e), 400)

    db.session.add(faculty)
    return _commit(faculty, "Faculty created successfully", 201, event='faculty_created')


@faculty_bp.route('/', methods=['GET'])
@admin_required
def list_faculty():
    page, limit = paginate_args(request)
    query = Faculty.query.filter_by(is_active=True)
    if request.args.get('department'):
        query = query.filter(Faculty.department == request.args['department'].strip().upper())
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Faculty.name.ilike(pattern),
            Faculty.initials.ilike(pattern),
            Faculty.email.ilike(pattern),
            Faculty.employee_id.ilike(pattern),
        ))
    total = query.count()
    records = query.order_by(Faculty.name).offset((page - 1) * limit).limit(limit).all()
    return json_response([f.to_dict() for f in records], "Faculty retrieved",
                         pagination=pagination_meta(page, limit, total))


@faculty_bp.route('/<int:faculty_id>', methods=['GET'])
@admin_required
def get_faculty(faculty_id):
    faculty = db.session.get(Faculty, faculty_id)
    if faculty is None:
        return error_response("Faculty not found", 404)
    return json_response(faculty.to_dict(), "Faculty retrieved")


@faculty_bp.route('/<int:faculty_id>', methods=['PUT'])
@admin_required
def update_faculty(faculty_id):
    faculty = db.session.get(Faculty, faculty_id)
    if faculty is None:
        return error_response("Faculty not found", 404)

    data = _json_body()
    duplicate = _duplicate_field(Faculty, data, {'email': 'email', 'employeeId': 'employee ID'}, exclude_id=faculty_id)
    if duplicate:
        return error_response(f"Faculty with this {duplicate} already exists", 400)

    try:
        faculty.update_from_dict(data)
        if 'studies' in data:
            _apply_studies(faculty, data['studies'])
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    return _commit(faculty, "Faculty updated successfully", event='faculty_updated')


@faculty_bp.route('/<int:faculty_id>', methods=['DELETE'])
@admin_required
def delete_faculty(faculty_id):
    faculty = db.session.get(Faculty, faculty_id)
    if faculty is None:
        return error_response("Faculty not found", 404)
    faculty.is_active = False
    return _commit(faculty, "Faculty deleted successfully", event='faculty_deleted')


@faculty_bp.route('/department/<department>', methods=['GET'])
@admin_required
def faculty_by_department(department):
    dept, err = _department_or_400(department, FACULTY_DEPARTMENTS)
    if err:
        return err
    records = Faculty.query.filter_by(department=dept, is_active=True).order_by(Faculty.name).all()
    return json_response([f.to_dict() for f in records], f"Faculty in {dept} retrieved")


@faculty_bp.route('/<int:faculty_id>/studies', methods=['POST'])
@admin_required
def add_faculty_study(faculty_id):
    faculty = db.session.get(Faculty, faculty_id)
    if faculty is None:
        return error_response("Faculty not found", 404)

    data = _json_body()
    try:
        study = FacultyStudy(
            degree=data.get('degree'),
            specialization=data.get('specialization'),
            institution=data.get('institution'),
            year=data.get('year'),
        )
    except ValueError as e:
        return error_response(str(e), 400)
    faculty.studies.append(study)
    return _commit(faculty, "Study added successfully", 201)


@faculty_bp.route('/<int:faculty_id>/studies/<int:study_id>', methods=['DELETE'])
@admin_required
def remove_faculty_study(faculty_id, study_id):
    faculty = db.session.get(Faculty, faculty_id)
    if faculty is None:
        return error_response("Faculty not found", 404)
    study = next((s for s in faculty.studies if s.id == study_id), None)
    if study is None:
        return error_response("Study not found", 404)
    faculty.studies.remove(study)
    return _commit(faculty, "Study removed successfully")


# ============ Subjects ============

def _apply_subject_faculty(subject, entries):
    entries = _object_entries(entries, "faculty")
    subject.faculty = [
        SubjectFaculty(title=f.get('title'), name=f.get('name'), initials=f.get('initials'))
        for f in entries
    ]


@subjects_bp.route('/', methods=['POST'])
@admin_required
def create_subject():
    data = _json_body()
    missing = [f for f in ('subjectCode', 'subjectName', 'department') if not data.get(f)]
    if missing:
        return error_response(f"Missing required fields: {', '.join(missing)}", 400)

    code = str(data['subjectCode']).strip().upper()
    if Subject.query.filter_by(subject_code=code).first():
        return error_response(f"Subject with code {code} already exists", 400)

    try:
        subject = Subject(created_by=current_user.id)
        subject.update_from_dict(data)
        if 'faculty' in data:
            _apply_subject_faculty(subject, data['faculty'])
    except ValueError as e:
        return error_response(str(e), 400)

    db.session.add(subject)
    return _commit(subject, "Subject created successfully", 201, event='subject_created')


@subjects_bp.route('/', methods=['GET'])
@admin_required
def list_subjects():
    page, limit = paginate_args(request)
    query = Subject.query.filter_by(is_active=True)
    if request.args.get('department'):
        query = query.filter(Subject.department == request.args['department'].strip().upper())
    if request.args.get('semester'):
        try:
            query = query.filter(Subject.semester == int(request.args['semester']))
        except ValueError:
            return error_response("semester must be a number", 400)
    search = (request.args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Subject.subject_code.ilike(pattern), Subject.subject_name.ilike(pattern)))
    total = query.count()
    records = query.order_by(Subject.subject_code).offset((page - 1) * limit).limit(limit).all()
    return json_response([s.to_dict() for s in records], "Subjects retrieved",
                         pagination=pagination_meta(page, limit, total))


@subjects_bp.route('/<int:subject_id>', methods=['GET'])
@admin_required
def get_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return error_response("Subject not found", 404)
    return json_response(subject.to_dict(), "Subject retrieved")


@subjects_bp.route('/<int:subject_id>', methods=['PUT'])
@admin_required
def update_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return error_response("Subject not found", 404)

    data = _json_body()
    if data.get('subjectCode'):
        code = str(data['subjectCode']).strip().upper()
        clash = Subject.query.filter(Subject.subject_code == code, Subject.id != subject_id).first()
        if clash:
            return error_response(f"Subject with code {code} already exists", 400)

    try:
        subject.update_from_dict(data)
        if 'faculty' in data:
            _apply_subject_faculty(subject, data['faculty'])
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    return _commit(subject, "Subject updated successfully", event='subject_updated')


@subjects_bp.route('/<int:subject_id>', methods=['DELETE'])
@admin_required
def delete_subject(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return error_response("Subject not found", 404)
    subject.is_active = False
    return _commit(subject, "Subject deleted successfully", event='subject_deleted')


@subjects_bp.route('/department/<department>', methods=['GET'])
@admin_required
def subjects_by_department(department):
    dept, err = _department_or_400(department, FACULTY_DEPARTMENTS)
    if err:
        return err
    records = (
        Subject.query.filter_by(department=dept, is_active=True)
        .order_by(Subject.semester, Subject.subject_code)
        .all()
    )
    return json_response([s.to_dict() for s in records], f"Subjects in {dept} retrieved")


@subjects_bp.route('/<int:subject_id>/faculty', methods=['POST'])
@admin_required
def add_subject_faculty(subject_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return error_response("Subject not found", 404)

    data = _json_body()
    try:
        entry = SubjectFaculty(title=data.get('title'), name=data.get('name'), initials=data.get('initials'))
    except ValueError as e:
        return error_response(str(e), 400)
    subject.faculty.append(entry)
    return _commit(subject, "Faculty assigned successfully", 201)


@subjects_bp.route('/<int:subject_id>/faculty/<int:entry_id>', methods=['DELETE'])
@admin_required
def remove_subject_faculty(subject_id, entry_id):
    subject = db.session.get(Subject, subject_id)
    if subject is None:
        return error_response("Subject not found", 404)
    entry = next((f for f in subject.faculty if f.id == entry_id), None)
    if entry is None:
        return error_response("Faculty assignment not found", 404)
    subject.faculty.remove(entry)
    return _commit(subject, "Faculty removed successfully")


# ============ Portal users ============

@admin_bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return json_response([u.to_dict() for u in users], "Users retrieved")


@admin_bp.route('/users/<int:user_id>/role', methods=['PATCH'])
@admin_required
def change_user_role(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return error_response("User not found", 404)
    try:
        role = UserRole(_json_body().get('role'))
    except ValueError:
        return error_response("Role must be 'admin' or 'faculty'", 400)
    if user.id == current_user.id and role != UserRole.ADMIN:
        return error_response("You cannot remove your own admin role", 400)

    user.role = role
    return _commit(user, f"Role updated to {role.value}", event='user_role_changed')


@admin_bp.route('/stats', methods=['GET'])
@admin_required
def stats():
    return json_response({
        "users": User.query.count(),
        "admins": User.query.filter_by(role=UserRole.ADMIN).count(),
        "students": Student.query.count(),
        "faculty": Faculty.query.filter_by(is_active=True).count(),
        "subjects": Subject.query.filter_by(is_active=True).count(),
        "processedResults": ProcessedResult.query.count(),
        "publishedResults": ProcessedResult.query.filter_by(is_published=True).count(),
    }, "Statistics retrieved")

"""
Database Model Tests
"""
from datetime import date

import pytest

from portal import db
from portal.models import (
    User, UserRole, ProcessedResult, ProcessingStatus, Student, Faculty,
    FacultyStudy, Subject, SubjectFaculty, AuditLog,
)
from conftest import student_fields


class TestUser:
    """Test User model"""

    def test_create_user(self, app):
        """Should create user"""
        with app.app_context():
            user = User(name='New User', email='New@User.com', role=UserRole.FACULTY)
            user.set_password('password123')
            db.session.add(user)
            db.session.commit()

            assert user.id is not None
            assert user.email == 'new@user.com'
            assert user.is_active is True
            assert user.is_admin is False
            assert user.check_password('password123') is True
            assert user.check_password('wrongpassword') is False

    def test_password_hashing(self, app):
        """Password should be hashed"""
        with app.app_context():
            user = User(name='Hash Test', email='hash@test.com')
            user.set_password('mypassword')

            assert user.password_hash != 'mypassword'
            assert user.check_password('mypassword') is True

    def test_invalid_email(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                User(name='Bad', email='not-an-email')


class TestProcessedResult:
    """Test ProcessedResult model"""

    EXTRACTED = {
        'headers': ['Reg No', 'Grade'],
        'rows': [{'data': {'Reg No': '2021001', 'Grade': 'A'}, 'issues': [], 'originalIndex': 2}],
        'metadata': {
            'confidence': 0.9,
            'totalRows': 1,
            'extractionMethod': 'spatial',
            'issues': [],
            'pageCount': 1,
            'headerRowIndex': 0,
        },
    }

    def test_from_extracted(self, app, admin_user):
        with app.app_context():
            record = ProcessedResult.from_extracted(self.EXTRACTED, 'sheet.pdf', admin_user['id'])
            db.session.add(record)
            db.session.commit()

            assert record.processing_status == ProcessingStatus.COMPLETED
            assert record.total_rows == 1
            assert record.extra_metadata == {'headerRowIndex': 0}
            assert record.is_published is False

            data = record.to_dict()
            assert data['metadata']['headerRowIndex'] == 0
            assert data['metadata']['confidence'] == 0.9
            assert data['rows'][0]['data']['Grade'] == 'A'
            assert 'rows' not in record.to_dict(include_rows=False)

    def test_publish_toggle(self, app):
        with app.app_context():
            record = ProcessedResult.from_extracted(self.EXTRACTED, 'sheet.pdf')
            record.publish()
            assert record.is_published is True
            assert record.published_at is not None
            record.unpublish()
            assert record.published_at is None


class TestStudent:
    """Test Student model"""

    def test_create_student_normalises_fields(self, app):
        with app.app_context():
            student = Student()
            student.update_from_dict(student_fields())
            db.session.add(student)
            db.session.commit()

            assert student.register_number == '2021CS0001'
            assert student.roll_number == '21CS001'
            assert student.email == 'alice@college.edu'
            assert student.department == 'CSE'
            assert student.date_of_birth == date(2003, 5, 17)

    def test_invalid_mobile(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                Student().update_from_dict(student_fields(mobileNumber='12345'))

    def test_invalid_department(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                Student().update_from_dict(student_fields(department='ARTS'))

    def test_pass_out_year_after_joining(self, app):
        with app.app_context():
            student = Student()
            student.update_from_dict(student_fields(passOutYear=2021))
            db.session.add(student)
            with pytest.raises(ValueError):
                db.session.commit()
            db.session.rollback()

    def test_merge_grades(self, app):
        with app.app_context():
            student = Student(grades={'MA101': 'A'})
            student.merge_grades({'ph101 ': ' b+'})
            assert student.grades == {'MA101': 'A', 'PH101': 'B+'}


class TestFacultyAndSubject:
    """Test Faculty and Subject models"""

    def test_faculty_display_names(self, app, admin_user):
        with app.app_context():
            faculty = Faculty(title='Dr.', name='Meena Iyer', initials='MI', department='cse',
                              email=' Meena@College.EDU ', created_by=admin_user['id'])
            faculty.studies.append(FacultyStudy(degree='PhD', specialization='Data Mining', year=2015))
            db.session.add(faculty)
            db.session.commit()

            assert faculty.full_name == 'Dr. Meena Iyer'
            assert faculty.display_name == 'Dr. Meena Iyer (MI)'
            assert faculty.email == 'meena@college.edu'
            assert faculty.department == 'CSE'
            assert faculty.to_dict()['studies'][0]['degree'] == 'PhD'

    def test_faculty_rejects_long_initials(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                Faculty(initials='ABCDEFGHIJK')

    def test_study_year_range(self, app):
        with app.app_context():
            with pytest.raises(ValueError):
                FacultyStudy(degree='PhD', year=1900)

    def test_subject_code_validation(self, app, admin_user):
        with app.app_context():
            subject = Subject(subject_code='cs3401', subject_name='Algorithms', department='CSE',
                              semester=4, credits=4, created_by=admin_user['id'])
            subject.faculty.append(SubjectFaculty(title='Prof.', name='Ravi Kumar', initials='RK'))
            db.session.add(subject)
            db.session.commit()

            assert subject.subject_code == 'CS3401'
            assert subject.subject_type == 'Theory'
            assert subject.display_name == 'CS3401 - Algorithms'

            with pytest.raises(ValueError):
                Subject(subject_code='ALGO')
            with pytest.raises(ValueError):
                Subject(semester=9)


class TestAuditLog:
    """Test AuditLog model"""

    def test_create_audit_log(self, app, admin_user):
        """Should create audit log entry"""
        with app.app_context():
            log = AuditLog(
                user_id=admin_user['id'],
                event_type='test_event',
                event_description='Test event description',
                ip_address='127.0.0.1'
            )
            db.session.add(log)
            db.session.commit()

            assert log.id is not None
            assert log.event_type == 'test_event'
            assert log.created_at is not None

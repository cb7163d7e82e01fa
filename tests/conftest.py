"""
Test Configuration and Fixtures
"""
import io
import os

import fitz
import pytest

from portal import create_app, db
from portal.models import User, UserRole

ADMIN_PASSWORD = 'adminpassword123'
FACULTY_PASSWORD = 'facultypassword123'

RESULT_ROWS = [
    ["Reg No", "Student Name", "MA101", "PH101"],
    ["2021001", "Alice Roy", "A", "U"],
    ["2021002", "Bob Shah", "B", "B"],
]
COLUMN_X = (50, 150, 320, 400)


def make_result_pdf(pages=None):
    """PDF with one table per page, each cell drawn at a fixed column position"""
    pages = pages or [RESULT_ROWS]
    doc = fitz.open()
    for rows in pages:
        page = doc.new_page()
        for r, row in enumerate(rows):
            for x, cell in zip(COLUMN_X, row):
                page.insert_text((x, 100 + r * 20), cell, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


def student_fields(**overrides):
    fields = {
        'email': 'Alice@College.edu',
        'rollNumber': '21cs001',
        'registerNumber': '2021cs0001',
        'name': 'Alice Roy',
        'typeOfAdmission': 'COUNSELLING',
        'aadhaarNumber': '123412341234',
        'department': 'cse',
        'joiningYear': 2021,
        'passOutYear': 2025,
        'dateOfBirth': '2003-05-17',
        'mobileNumber': '9876543210',
    }
    fields.update(overrides)
    return fields


def create_user(app,email, role, name='Test User', password='password123', is_active=True):
    with app.app_context():
        user = User(name=name, email=email, role=role, is_active=is_active)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return {'id': user.id, 'email': user.email, 'password': password}


def login(client, user):
    return client.post('/api/auth/login', json={'email': user['email'], 'password': user['password']})


@pytest.fixture()
def app(tmp_path):
    """Create application for testing (fresh in-memory database per test)"""
    os.environ['SECRET_KEY'] = 'test-secret-key'

    app = create_app('testing')
    app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture()
def temp_store(app):
    return app.extensions['temp_sessions']


@pytest.fixture()
def admin_user(app):
    """Create admin user"""
    return create_user(app, 'admin@college.edu', UserRole.ADMIN, name='Admin User', password=ADMIN_PASSWORD)


@pytest.fixture()
def faculty_user(app):
    """Create faculty user"""
    return create_user(app, 'faculty@college.edu', UserRole.FACULTY, name='Faculty User', password=FACULTY_PASSWORD)


@pytest.fixture()
def authenticated_client(client, admin_user):
    """Create authenticated (admin) test client"""
    login(client, admin_user)
    return client


@pytest.fixture()
def faculty_client(app, faculty_user):
    """Second client logged in as faculty"""
    c = app.test_client()
    login(c, faculty_user)
    return c


@pytest.fixture()
def sample_pdf():
    return make_result_pdf()


@pytest.fixture()
def upload(client):
    """Post a file to upload-extract and return the response"""
    def _upload(data, filename, field='pdfFile', target=None):
        return (target or client).post(
            '/api/processed-results/upload-extract',
            data={field: (io.BytesIO(data), filename)},
            content_type='multipart/form-data',
        )
    return _upload

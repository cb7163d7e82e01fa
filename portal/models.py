"""
Database Models

Key Models:
- User: portal account (admin or faculty), used by Flask-Login
- ProcessedResult: a confirmed extraction (headers + rows as JSON)
- Student / Faculty / Subject: administrative records
- AuditLog: who saved, published, logged in
"""
from datetime import date, datetime, timezone
import enum
import re

from flask_login import UserMixin
from sqlalchemy import event
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from portal import db


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class UserRole(enum.Enum):
    ADMIN = "admin"
    FACULTY = "faculty"


class ProcessingStatus(enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


STUDENT_DEPARTMENTS = ("CSE", "ECE", "EEE", "MECH", "CIVIL", "IT", "AIDS")
FACULTY_DEPARTMENTS = STUDENT_DEPARTMENTS + ("AIML", "CSBS", "OTHER")
ADMISSION_TYPES = ("COUNSELLING", "MANAGEMENT")
ADMISSION_MODES = ("DIRECT",)
MEDIUMS = ("ENGLISH", "TAMIL")
GENDERS = ("MALE", "FEMALE", "OTHER")
FACULTY_TITLES = ("Dr.", "Prof.", "Asst. Prof.", "Assoc. Prof.", "Mr.", "Ms.", "Mrs.")
DEGREES = (
    "PhD", "M.Tech", "M.E", "M.Sc", "M.A", "M.Com", "MBA", "MCA",
    "B.Tech", "B.E", "B.Sc", "B.A", "B.Com", "BCA", "Diploma", "Other",
)
SUBJECT_TYPES = ("Theory", "Practical", "Lab", "Project")

SUBJECT_CODE_RE = re.compile(r"^[A-Z]{2,4}\d{3,4}[A-Z]?$")
MOBILE_RE = re.compile(r"^\d{10}$")


def _choice(field, value, choices, required=True):
    if value in (None, ""):
        if required:
            raise ValueError(f"{field} is required")
        return None
    if value not in choices:
        raise ValueError(f"{field} must be one of: {', '.join(choices)}")
    return value


def _int(field, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number")


def _required(field, value):
    value = value.strip() if isinstance(value, str) else value
    if value in (None, ""):
        raise ValueError(f"{field} is required")
    return value


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), default=UserRole.FACULTY, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True))

    results = db.relationship('ProcessedResult', back_populates='uploader', lazy='dynamic')

    @validates('email')
    def validate_email(self, key, value):
        value = _required('email', value).lower()
        if '@' not in value:
            raise ValueError("email is not valid")
        return value

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value if self.role else None,
            'isActive': self.is_active,
            'createdAt': _iso(self.created_at),
            'lastLoginAt': _iso(self.last_login_at),
        }


class ProcessedResult(db.Model):
    """
    A saved extraction. Headers and rows are stored exactly as the structurer
    produced them so the analysis view can be rebuilt later.
    """
    __tablename__ = 'processed_results'

    id = db.Column(db.Integer, primary_key=True)
    file_name = db.Column(db.String(255), nullable=False)
    headers = db.Column(db.JSON, default=list)
    rows = db.Column(db.JSON, default=list)
    extraction_method = db.Column(db.String(20))
    confidence = db.Column(db.Float, default=0.0)
    total_rows = db.Column(db.Integer, default=0)
    page_count = db.Column(db.Integer)
    issues = db.Column(db.JSON, default=list)
    extra_metadata = db.Column(db.JSON, default=dict)

    uploaded_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    processing_status = db.Column(db.Enum(ProcessingStatus), default=ProcessingStatus.PENDING)

    is_published = db.Column(db.Boolean, default=False, nullable=False)
    published_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    uploader = db.relationship('User', back_populates='results')

    @classmethod
    def from_extracted(cls, extracted, file_name, user_id=None):
        """Build a record from an ExtractedResult dict"""
        metadata = dict(extracted.get('metadata') or {})
        known = ('confidence', 'totalRows', 'extractionMethod', 'issues', 'pageCount')
        return cls(
            file_name=file_name,
            headers=list(extracted.get('headers') or []),
            rows=list(extracted.get('rows') or []),
            extraction_method=metadata.get('extractionMethod'),
            confidence=float(metadata.get('confidence') or 0.0),
            total_rows=int(metadata.get('totalRows') or len(extracted.get('rows') or [])),
            page_count=metadata.get('pageCount'),
            issues=list(metadata.get('issues') or []),
            extra_metadata={k: v for k, v in metadata.items() if k not in known},
            uploaded_by=user_id,
            processing_status=ProcessingStatus.COMPLETED,
        )

    def publish(self):
        self.is_published = True
        self.published_at = utcnow()

    def unpublish(self):
        self.is_published = False
        self.published_at = None

    def to_dict(self, include_rows=True):
        result = {
            'id': self.id,
            'fileName': self.file_name,
            'headers': self.headers or [],
            'metadata': {
                **(self.extra_metadata or {}),
                'confidence': self.confidence,
                'totalRows': self.total_rows,
                'extractionMethod': self.extraction_method,
                'pageCount': self.page_count,
                'issues': self.issues or [],
            },
            'uploadedBy': self.uploaded_by,
            'uploadedAt': _iso(self.uploaded_at),
            'processingStatus': self.processing_status.value if self.processing_status else None,
            'isPublished': self.is_published,
            'publishedAt': _iso(self.published_at),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if include_rows:
            result['rows'] = self.rows or []
        return result


class Student(db.Model):
    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    roll_number = db.Column(db.String(50), unique=True, nullable=False)
    register_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False, index=True)
    type_of_admission = db.Column(db.String(20), nullable=False)
    mode_of_admission = db.Column(db.String(20))
    medium_of_instruction = db.Column(db.String(20))
    gender = db.Column(db.String(10))
    father_name = db.Column(db.String(150))
    mother_name = db.Column(db.String(150))
    community = db.Column(db.String(50))
    aadhaar_number = db.Column(db.String(20), unique=True, nullable=False)
    department = db.Column(db.String(10), nullable=False, index=True)
    joining_year = db.Column(db.Integer, nullable=False)
    pass_out_year = db.Column(db.Integer, nullable=False)
    date_of_birth = db.Column(db.Date, nullable=False)
    mobile_number = db.Column(db.String(10), unique=True, nullable=False)
    grades = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Form field name -> column
    FIELDS = {
        'email': 'email',
        'rollNumber': 'roll_number',
        'registerNumber': 'register_number',
        'name': 'name',
        'typeOfAdmission': 'type_of_admission',
        'modeOfAdmission': 'mode_of_admission',
        'mediumOfInstruction': 'medium_of_instruction',
        'gender': 'gender',
        'fatherName': 'father_name',
        'motherName': 'mother_name',
        'community': 'community',
        'aadhaarNumber': 'aadhaar_number',
        'department': 'department',
        'joiningYear': 'joining_year',
        'passOutYear': 'pass_out_year',
        'dateOfBirth': 'date_of_birth',
        'mobileNumber': 'mobile_number',
    }
    REQUIRED = (
        'email', 'rollNumber', 'registerNumber', 'name', 'typeOfAdmission',
        'aadhaarNumber', 'department', 'joiningYear', 'passOutYear',
        'dateOfBirth', 'mobileNumber',
    )

    @validates('email')
    def validate_email(self, key, value):
        return _required(key, value).lower()

    @validates('roll_number', 'register_number')
    def validate_upper(self, key, value):
        return str(_required(key, value)).upper()

    @validates('name', 'aadhaar_number')
    def validate_required(self, key, value):
        return _required(key, value)

    @validates('type_of_admission')
    def validate_admission(self, key, value):
        return _choice(key, value, ADMISSION_TYPES)

    @validates('mode_of_admission')
    def validate_mode(self, key, value):
        return _choice(key, value, ADMISSION_MODES, required=False)

    @validates('medium_of_instruction')
    def validate_medium(self, key, value):
        return _choice(key, value, MEDIUMS, required=False)

    @validates('gender')
    def validate_gender(self, key, value):
        return _choice(key, value, GENDERS, required=False)

    @validates('department')
    def validate_department(self, key, value):
        return _choice(key, str(value or '').strip().upper(), STUDENT_DEPARTMENTS)

    @validates('joining_year')
    def validate_joining_year(self, key, value):
        year = _int(key, value)
        if year > date.today().year + 1:
            raise ValueError("Joining year cannot be in the future")
        return year

    @validates('pass_out_year')
    def validate_pass_out_year(self, key, value):
        return _int(key, value)

    @validates('date_of_birth')
    def validate_dob(self, key, value):
        if isinstance(value, str):
            value = date.fromisoformat(value[:10])
        if not isinstance(value, date):
            raise ValueError("dateOfBirth is required")
        return value

    @validates('mobile_number')
    def validate_mobile(self, key, value):
        value = str(value or '').strip()
        if not MOBILE_RE.match(value):
            raise ValueError("Please provide a valid 10-digit mobile number")
        return value

    def update_from_dict(self, data):
        """Apply camelCase form fields onto the record"""
        for key, attr in self.FIELDS.items():
            if key in data:
                setattr(self, attr, data[key])

    def merge_grades(self, grades):
        merged = dict(self.grades or {})
        for code, grade in (grades or {}).items():
            merged[str(code).strip().upper()] = str(grade).strip().upper()
        self.grades = merged

    def to_dict(self):
        result = {key: getattr(self, attr) for key, attr in self.FIELDS.items()}
        result['id'] = self.id
        result['dateOfBirth'] = _iso(self.date_of_birth)
        result['grades'] = self.grades or {}
        result['createdAt'] = _iso(self.created_at)
        result['updatedAt'] = _iso(self.updated_at)
        return result


@event.listens_for(Student, 'before_insert')
@event.listens_for(Student, 'before_update')
def check_student_years(mapper, connection, student):
    if None not in (student.pass_out_year, student.joining_year) and student.pass_out_year <= student.joining_year:
        raise ValueError("Pass out year must be after joining year")


class Faculty(db.Model):
    __tablename__ = 'faculty'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(150), nullable=False, index=True)
    initials = db.Column(db.String(10), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True)
    department = db.Column(db.String(10), nullable=False, index=True)
    employee_id = db.Column(db.String(50), unique=True, nullable=True)
    phone_number = db.Column(db.String(20))
    date_of_joining = db.Column(db.Date)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    studies = db.relationship('FacultyStudy', back_populates='faculty', cascade='all, delete-orphan',
                              order_by='FacultyStudy.id')

    FIELDS = {
        'title': 'title',
        'name': 'name',
        'initials': 'initials',
        'email': 'email',
        'department': 'department',
        'employeeId': 'employee_id',
        'phoneNumber': 'phone_number',
        'dateOfJoining': 'date_of_joining',
        'isActive': 'is_active',
    }

    @validates('title')
    def validate_title(self, key, value):
        return _choice(key, value, FACULTY_TITLES)

    @validates('name')
    def validate_name(self, key, value):
        return _required(key, value)

    @validates('initials')
    def validate_initials(self, key, value):
        value = _required(key, value)
        if len(value) > 10:
            raise ValueError("initials must be at most 10 characters")
        return value

    @validates('email')
    def validate_email(self, key, value):
        value = (value or '').strip().lower()
        return value or None

    @validates('employee_id', 'phone_number')
    def validate_optional(self, key, value):
        value = str(value).strip() if value is not None else ''
        return value or None

    @validates('department')
    def validate_department(self, key, value):
        return _choice(key, str(value or '').strip().upper(), FACULTY_DEPARTMENTS)

    @validates('date_of_joining')
    def validate_doj(self, key, value):
        if isinstance(value, str):
            return date.fromisoformat(value[:10]) if value else None
        return value

    @property
    def full_name(self):
        return f"{self.title} {self.name}"

    @property
    def display_name(self):
        return f"{self.title} {self.name} ({self.initials})"

    def update_from_dict(self, data):
        for key, attr in self.FIELDS.items():
            if key in data:
                setattr(self, attr, data[key])

    def to_dict(self):
        result = {key: getattr(self, attr) for key, attr in self.FIELDS.items()}
        result.update({
            'id': self.id,
            'dateOfJoining': _iso(self.date_of_joining),
            'fullName': self.full_name,
            'displayName': self.display_name,
            'studies': [s.to_dict() for s in self.studies],
            'createdBy': self.created_by,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        })
        return result


class FacultyStudy(db.Model):
    __tablename__ = 'faculty_studies'

    id = db.Column(db.Integer, primary_key=True)
    faculty_id = db.Column(db.Integer, db.ForeignKey('faculty.id'), nullable=False, index=True)
    degree = db.Column(db.String(20), nullable=False)
    specialization = db.Column(db.String(255))
    institution = db.Column(db.String(255))
    year = db.Column(db.Integer)

    faculty = db.relationship('Faculty', back_populates='studies')

    @validates('degree')
    def validate_degree(self, key, value):
        return _choice(key, value, DEGREES)

    @validates('year')
    def validate_year(self, key, value):
        if value in (None, ''):
            return None
        year = int(value)
        if year < 1950 or year > date.today().year:
            raise ValueError(f"year must be between 1950 and {date.today().year}")
        return year

    def to_dict(self):
        return {
            'id': self.id,
            'degree': self.degree,
            'specialization': self.specialization,
            'institution': self.institution,
            'year': self.year,
        }


class Subject(db.Model):
    __tablename__ = 'subjects'

    id = db.Column(db.Integer, primary_key=True)
    subject_code = db.Column(db.String(10), unique=True, nullable=False, index=True)
    subject_name = db.Column(db.String(255), nullable=False)
    department = db.Column(db.String(10), nullable=False, index=True)
    semester = db.Column(db.Integer)
    credits = db.Column(db.Integer)
    subject_type = db.Column(db.String(20), default='Theory', nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    faculty = db.relationship('SubjectFaculty', back_populates='subject', cascade='all, delete-orphan',
                              order_by='SubjectFaculty.id')

    FIELDS = {
        'subjectCode': 'subject_code',
        'subjectName': 'subject_name',
        'department': 'department',
        'semester': 'semester',
        'credits': 'credits',
        'subjectType': 'subject_type',
        'isActive': 'is_active',
    }

    @validates('subject_code')
    def validate_code(self, key, value):
        value = str(_required('subjectCode', value)).upper()
        if not SUBJECT_CODE_RE.match(value):
            raise ValueError("Subject code must be 2-4 letters followed by 3-4 digits")
        return value

    @validates('subject_name')
    def validate_name(self, key, value):
        return _required('subjectName', value)

    @validates('department')
    def validate_department(self, key, value):
        return _choice(key, str(value or '').strip().upper(), FACULTY_DEPARTMENTS)

    @validates('semester')
    def validate_semester(self, key, value):
        if value in (None, ''):
            return None
        value = int(value)
        if not 1 <= value <= 8:
            raise ValueError("semester must be between 1 and 8")
        return value

    @validates('credits')
    def validate_credits(self, key, value):
        if value in (None, ''):
            return None
        value = int(value)
        if not 1 <= value <= 6:
            raise ValueError("credits must be between 1 and 6")
        return value

    @validates('subject_type')
    def validate_type(self, key, value):
        return _choice('subjectType', value or 'Theory', SUBJECT_TYPES)

    @property
    def display_name(self):
        return f"{self.subject_code} - {self.subject_name}"

    def update_from_dict(self, data):
        for key, attr in self.FIELDS.items():
            if key in data:
                setattr(self, attr, data[key])

    def to_dict(self):
        result = {key: getattr(self, attr) for key, attr in self.FIELDS.items()}
        result.update({
            'id': self.id,
            'displayName': self.display_name,
            'faculty': [f.to_dict() for f in self.faculty],
            'createdBy': self.created_by,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        })
        return result


class SubjectFaculty(db.Model):
    __tablename__ = 'subject_faculty'

    id = db.Column(db.Integer, primary_key=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'), nullable=False, index=True)
    title = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    initials = db.Column(db.String(10), nullable=False)

    subject = db.relationship('Subject', back_populates='faculty')

    @validates('title')
    def validate_title(self, key, value):
        return _choice(key, value, FACULTY_TITLES)

    @validates('name', 'initials')
    def validate_required(self, key, value):
        return _required(key, value)

    def to_dict(self):
        return {'id': self.id, 'title': self.title, 'name': self.name, 'initials': self.initials}


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    event_type = db.Column(db.String(100), nullable=False)
    event_description = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

"""
Pass/fail aggregation over student grade maps.

A student record is `{"regNo": str, "name": str, "grades": {subject_code: grade}}`.
"U" is the failing grade for pass counts; an empty grade means the student did
not appear for that subject.
"""
import logging
import re
from collections import Counter, OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

PASS_GRADES = ("O", "A+", "A", "B+", "B", "C")
FAIL_GRADES = ("RA", "AB", "F", "U", "W")
FAIL_SENTINEL = "U"
HIGH_PERFORMANCE_THRESHOLD = 90.0

SUBJECT_CODE_RE = re.compile(r"^[A-Z]{2,4}\d{3,4}[A-Z]?$")

REGISTRATION_HEADERS = ("registration number", "register number", "reg no", "reg. no", "regno", "roll number", "roll no")
NAME_HEADERS = ("student name", "name", "name of the candidate", "candidate name")
SUBJECT_HEADERS = ("subject code", "subject", "code", "course code")
GRADE_HEADERS = ("grade", "grades", "result", "grade obtained")


def normalize_grade(grade: Any) -> str:
    return str(grade).strip().upper() if grade is not None else ""


def determine_pass_fail(grade: Any) -> str:
    return "PASS" if normalize_grade(grade) in PASS_GRADES else "FAIL"


def _has_grade(student: Dict[str, Any], code: str) -> bool:
    return bool(normalize_grade((student.get("grades") or {}).get(code)))


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def grade_distribution(grades: Sequence[str]) -> List[Dict[str, Any]]:
    """Counts per grade: pass grades first, then fail grades, then the rest."""
    counts = Counter(g for g in grades if g)
    ordered = []
    for grade in PASS_GRADES + FAIL_GRADES:
        if counts.get(grade):
            ordered.append({"grade": grade, "count": counts.pop(grade)})
    for grade in sorted(counts):
        ordered.append({"grade": grade, "count": counts[grade]})
    return ordered


def subject_codes_from_students(students: Sequence[Dict[str, Any]]) -> List[str]:
    codes: List[str] = []
    for student in students:
        for code in (student.get("grades") or {}):
            if code not in codes:
                codes.append(code)
    return codes


def aggregate_grades(
    students: Sequence[Dict[str, Any]],
    subject_codes: Optional[Sequence[str]] = None,
    start_index: int = 0,
) -> Dict[str, Any]:
    """
    Aggregate pass/fail statistics for `students[start_index:]`.

    `start_index` marks the first real student; rows before it are header or
    noise rows picked up by extraction. Raises ValueError when it is out of
    range.
    """
    if not isinstance(start_index, int) or isinstance(start_index, bool):
        raise ValueError("startIndex must be an integer")
    if start_index < 0 or start_index >= len(students):
        raise ValueError(f"startIndex {start_index} out of range for {len(students)} students")
    if subject_codes is not None and (
        not isinstance(subject_codes, (list, tuple)) or not all(isinstance(c, str) for c in subject_codes)
    ):
        raise ValueError("subjectCodes must be a list of subject codes")
    for position, student in enumerate(students):
        if not isinstance(student, dict):
            raise ValueError(f"Student {position} must be an object")
        if not isinstance(student.get("grades") or {}, dict):
            raise ValueError(f"Student {position}: grades must be an object of subject code to grade")

    selected = list(students[start_index:])
    codes = list(subject_codes) if subject_codes else subject_codes_from_students(selected)

    def passes(student: Dict[str, Any]) -> bool:
        grades = student.get("grades") or {}
        considered = [grades.get(c) for c in codes] if subject_codes else list(grades.values())
        return all(normalize_grade(g) != FAIL_SENTINEL for g in considered)

    passed_overall = sum(1 for s in selected if passes(s))
    complete = [s for s in selected if codes and all(_has_grade(s, c) for c in codes)]

    subject_results = []
    for code in codes:
        with_grades = [s for s in selected if _has_grade(s, code)]
        grades = [normalize_grade(s["grades"][code]) for s in with_grades]
        passed = sum(1 for g in grades if g != FAIL_SENTINEL)
        subject_results.append({
            "subject": code,
            "passPercentage": _percentage(passed, len(with_grades)),
            "totalStudents": len(with_grades),
            "passedStudents": passed,
            "emptyGrades": len(selected) - len(with_grades),
            "gradeDistribution": grade_distribution(grades),
            "studentsWithGrades": [
                {"regNo": s.get("regNo"), "name": s.get("name"), "grade": g}
                for s, g in zip(with_grades, grades)
            ],
        })

    logger.debug("Aggregated %d students over %d subjects", len(selected), len(codes))
    return {
        "startIndex": start_index,
        "totalStudents": len(selected),
        "totalSubjects": len(codes),
        "passedStudents": passed_overall,
        "overallPassPercentage": _percentage(passed_overall, len(selected)),
        "studentsWithCompleteGrades": [
            {"regNo": s.get("regNo"), "name": s.get("name"), "grades": s.get("grades") or {}}
            for s in complete
        ],
        "highPerformingSubjects": [
            r["subject"] for r in subject_results if r["passPercentage"] >= HIGH_PERFORMANCE_THRESHOLD
        ],
        "subjectWiseResults": subject_results,
    }


# ============ ExtractedResult -> students ============

def _find_header(headers: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    lowered = {h.strip().lower(): h for h in headers}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def students_from_result(headers: Sequence[str], rows: Sequence[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Build student grade maps from saved rows.

    Wide layout: every header shaped like a subject code is a subject column.
    Long layout: one row per (student, subject) with `Subject Code` and
    `Grade` columns, grouped by registration number.
    """
    reg_header = _find_header(headers, REGISTRATION_HEADERS)
    name_header = _find_header(headers, NAME_HEADERS)
    subject_columns = [h for h in headers if SUBJECT_CODE_RE.match(h.strip().upper())]

    def cell(row: Dict[str, Any], header: Optional[str]) -> str:
        if not header:
            return ""
        return str((row.get("data") or {}).get(header) or "").strip()

    if subject_columns:
        students = []
        for row in rows:
            grades = {h.strip().upper(): normalize_grade(cell(row, h)) for h in subject_columns}
            students.append({
                "regNo": cell(row, reg_header).upper(),
                "name": cell(row, name_header),
                "grades": grades,
            })
        return students, [h.strip().upper() for h in subject_columns]

    subject_header = _find_header(headers, SUBJECT_HEADERS)
    grade_header = _find_header(headers, GRADE_HEADERS)
    if not (subject_header and grade_header):
        raise ValueError("Result has no subject-code columns and no Subject Code/Grade columns")

    by_student: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    codes: List[str] = []
    for row in rows:
        code = cell(row, subject_header).upper()
        if not code:
            continue
        reg_no = cell(row, reg_header).upper()
        key = reg_no or cell(row, name_header) or str(row.get("originalIndex"))
        student = by_student.setdefault(key, {"regNo": reg_no, "name": cell(row, name_header), "grades": {}})
        student["grades"][code] = normalize_grade(cell(row, grade_header))
        if code not in codes:
            codes.append(code)
    return list(by_student.values()), codes

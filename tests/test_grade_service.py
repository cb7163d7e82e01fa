"""
Grade Aggregation Tests
"""
import pytest

from portal.services.grade_service import (
    aggregate_grades, determine_pass_fail, grade_distribution, students_from_result,
)

STUDENTS = [
    {'regNo': '2021001', 'name': 'Alice Roy', 'grades': {'MA101': 'A', 'PH101': 'U'}},
    {'regNo': '2021002', 'name': 'Bob Shah', 'grades': {'MA101': 'B', 'PH101': 'B'}},
]


def row(data, index=1):
    return {'data': data, 'issues': [], 'originalIndex': index}


class TestAggregateGrades:
    """Test pass/fail statistics"""

    def test_overall_and_subject_rates(self):
        result = aggregate_grades(STUDENTS, ['MA101', 'PH101'], 0)

        assert result['totalStudents'] == 2
        assert result['totalSubjects'] == 2
        assert result['passedStudents'] == 1
        assert result['overallPassPercentage'] == 50.0

        ma, ph = result['subjectWiseResults']
        assert ma['subject'] == 'MA101'
        assert ma['passPercentage'] == 100.0
        assert ph['passPercentage'] == 50.0
        assert ph['studentsWithGrades'][0] == {'regNo': '2021001', 'name': 'Alice Roy', 'grade': 'U'}
        assert result['highPerformingSubjects'] == ['MA101']
        assert len(result['studentsWithCompleteGrades']) == 2

    def test_start_index_skips_noise_rows(self):
        noise = {'regNo': '', 'name': 'Reg No', 'grades': {'MA101': 'MA101'}}
        result = aggregate_grades([noise] + STUDENTS, ['MA101'], 1)
        assert result['startIndex'] == 1
        assert result['totalStudents'] == 2

    def test_subject_codes_default_to_grade_keys(self):
        result = aggregate_grades(STUDENTS)
        assert [s['subject'] for s in result['subjectWiseResults']] == ['MA101', 'PH101']

    def test_empty_grades_excluded_from_subject_rate(self):
        students = STUDENTS + [{'regNo': '2021003', 'name': 'Cara Das', 'grades': {'MA101': '', 'PH101': 'U'}}]
        result = aggregate_grades(students, ['MA101', 'PH101'])
        ma = result['subjectWiseResults'][0]
        assert ma['totalStudents'] == 2
        assert ma['emptyGrades'] == 1
        assert ma['passPercentage'] == 100.0
        assert len(result['studentsWithCompleteGrades']) == 2

    def test_rates_are_rounded(self):
        students = [
            {'regNo': str(i), 'name': '', 'grades': {'MA101': grade}}
            for i, grade in enumerate(['A', 'A', 'U'])
        ]
        result = aggregate_grades(students, ['MA101'])
        assert result['overallPassPercentage'] == 66.67

    @pytest.mark.parametrize('start_index', [-1, 2, 10, '0', 1.0, True])
    def test_invalid_start_index(self, start_index):
        with pytest.raises(ValueError):
            aggregate_grades(STUDENTS, ['MA101'], start_index)

    def test_no_students(self):
        with pytest.raises(ValueError):
            aggregate_grades([], ['MA101'], 0)

    @pytest.mark.parametrize('grades', [['A'], 'A', 3])
    def test_grades_must_be_mapping(self, grades):
        with pytest.raises(ValueError, match='grades'):
            aggregate_grades([{'regNo': '1', 'grades': grades}])

    @pytest.mark.parametrize('codes', ['MA101', {'MA101': 1}, [101]])
    def test_subject_codes_must_be_list_of_strings(self, codes):
        with pytest.raises(ValueError, match='subjectCodes'):
            aggregate_grades(STUDENTS, codes)

    def test_student_must_be_mapping(self):
        with pytest.raises(ValueError):
            aggregate_grades(STUDENTS + ['Alice'])


class TestGradeHelpers:
    """Test grade classification"""

    def test_determine_pass_fail(self):
        assert determine_pass_fail('a+') == 'PASS'
        assert determine_pass_fail(' O ') == 'PASS'
        assert determine_pass_fail('RA') == 'FAIL'
        assert determine_pass_fail('') == 'FAIL'
        assert determine_pass_fail(None) == 'FAIL'

    def test_distribution_order(self):
        assert grade_distribution(['U', 'A', 'B', 'A', 'X', '']) == [
            {'grade': 'A', 'count': 2},
            {'grade': 'B', 'count': 1},
            {'grade': 'U', 'count': 1},
            {'grade': 'X', 'count': 1},
        ]


class TestStudentsFromResult:
    """Test reading student grade maps out of saved rows"""

    def test_wide_layout(self):
        headers = ['Reg No', 'Student Name', 'MA101', 'ph101']
        rows = [
            row({'Reg No': '2021001', 'Student Name': 'Alice Roy', 'MA101': 'a', 'ph101': 'U'}),
            row({'Reg No': '2021002', 'Student Name': 'Bob Shah', 'MA101': 'B', 'ph101': ''}, 2),
        ]
        students, codes = students_from_result(headers, rows)
        assert codes == ['MA101', 'PH101']
        assert students[0] == {'regNo': '2021001', 'name': 'Alice Roy', 'grades': {'MA101': 'A', 'PH101': 'U'}}
        assert students[1]['grades']['PH101'] == ''

    def test_long_layout(self):
        headers = ['Registration Number', 'Name', 'Subject Code', 'Grade']
        rows = [
            row({'Registration Number': '2021001', 'Name': 'Alice Roy', 'Subject Code': 'MA101', 'Grade': 'A'}, 1),
            row({'Registration Number': '2021001', 'Name': 'Alice Roy', 'Subject Code': 'PH101', 'Grade': 'U'}, 2),
            row({'Registration Number': '2021002', 'Name': 'Bob Shah', 'Subject Code': 'MA101', 'Grade': 'B'}, 3),
        ]
        students, codes = students_from_result(headers, rows)
        assert codes == ['MA101', 'PH101']
        assert len(students) == 2
        assert students[0]['grades'] == {'MA101': 'A', 'PH101': 'U'}
        assert students[1]['grades'] == {'MA101': 'B'}

        result = aggregate_grades(students, codes)
        assert result['overallPassPercentage'] == 50.0

    def test_unrecognised_layout(self):
        with pytest.raises(ValueError):
            students_from_result(['Content'], [row({'Content': 'text'})])

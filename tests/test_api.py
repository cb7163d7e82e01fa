"""
API Endpoint Tests
"""
import json
import os

from portal import db
from portal.models import ProcessedResult, AuditLog
from conftest import make_result_pdf, RESULT_ROWS


class TestHealthEndpoints:
    """Test health check endpoints"""

    def test_healthz(self, client):
        """Health check should return ok"""
        response = client.get('/healthz')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert data['status'] == 'ok'
        assert data['database'] == 'ok'
        assert 'version' in data
        assert 'timestamp' in data
        # OCR is switched off in the testing config
        assert data['ocr_ready'] is False
        assert data['ocr_message'] == 'disabled'

    def test_version(self, client):
        """Version endpoint should return build info"""
        response = client.get('/version')
        assert response.status_code == 200

        data = json.loads(response.data)
        assert 'version' in data
        assert data['features']['spreadsheet_upload'] is True

    def test_blueprint_test_route(self, client):
        response = client.get('/api/processed-results/test')
        assert response.status_code == 200
        assert response.get_json()['success'] is True

    def test_unknown_api_route_returns_json_404(self, client):
        response = client.get('/api/does-not-exist')
        assert response.status_code == 404
        assert response.get_json()['success'] is False


class TestUploadExtract:
    """Test upload and extraction"""

    def test_requires_file(self, client):
        response = client.post('/api/processed-results/upload-extract')
        assert response.status_code == 400
        assert response.get_json()['message'] == 'No file uploaded'

    def test_rejects_unsupported_type(self, upload):
        response = upload(b'hello', 'notes.txt')
        assert response.status_code == 400
        assert 'Invalid file type' in response.get_json()['message']

    def test_rejects_oversized_upload(self, app, upload):
        app.config['MAX_CONTENT_LENGTH'] = 1024
        response = upload(b'x' * 4096, 'big.pdf')
        assert response.status_code == 413
        assert response.get_json()['success'] is False

    def test_extracts_tabular_pdf(self, upload, temp_store, sample_pdf):
        """A clear tabular PDF yields headers and rows"""
        response = upload(sample_pdf, 'results.pdf')
        assert response.status_code == 200

        body = response.get_json()
        data = body['data']
        extracted = data['extractedData']
        assert extracted['headers'] == ['Reg No', 'Student Name', 'MA101', 'PH101']
        assert len(extracted['rows']) == 2
        assert extracted['rows'][0]['data']['Student Name'] == 'Alice Roy'
        assert extracted['metadata']['extractionMethod'] == 'spatial'
        assert 0 <= extracted['metadata']['confidence'] <= 1
        assert data['preview']['totalRows'] == 2
        assert data['tempId'] in temp_store

    def test_file_field_alias(self, upload, sample_pdf):
        response = upload(sample_pdf, 'results.pdf', field='file')
        assert response.status_code == 200

    def test_uploaded_file_kept_until_discard(self, app, authenticated_client, upload, temp_store, sample_pdf):
        response = upload(sample_pdf, 'results.pdf', target=authenticated_client)
        temp_id = response.get_json()['data']['tempId']
        stored = os.listdir(app.config['UPLOAD_FOLDER'])
        assert len(stored) == 1
        assert temp_store.get(temp_id).original_file == os.path.join(app.config['UPLOAD_FOLDER'], stored[0])

        authenticated_client.post('/api/processed-results/save',
                                  json={'tempId': temp_id, 'decision': 'discard'})
        assert os.listdir(app.config['UPLOAD_FOLDER']) == []

    def test_failed_extraction_removes_file(self, app, upload, temp_store):
        upload(b'%PDF-1.4 definitely not a pdf', 'broken.pdf')
        assert os.listdir(app.config['UPLOAD_FOLDER']) == []
        assert len(temp_store) == 0

    def test_same_name_uploads_get_separate_entries(self, app, upload, temp_store, sample_pdf):
        first = upload(sample_pdf, 'results.pdf').get_json()['data']['tempId']
        second = upload(sample_pdf, 'results.pdf').get_json()['data']['tempId']
        assert first != second
        assert temp_store.get(first).original_file != temp_store.get(second).original_file
        assert len(os.listdir(app.config['UPLOAD_FOLDER'])) == 2

    def test_unreadable_pdf(self, upload):
        response = upload(b'%PDF-1.4 definitely not a pdf', 'broken.pdf')
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_csv_upload(self, upload):
        csv = "Reg No,Student Name,MA101\n2021001,Alice Roy,A\n2021002,Bob Shah,U\n"
        response = upload(csv.encode(), 'results.csv')
        assert response.status_code == 200

        extracted = response.get_json()['data']['extractedData']
        assert extracted['headers'] == ['Reg No', 'Student Name', 'MA101']
        assert extracted['metadata']['extractionMethod'] == 'spreadsheet'
        assert extracted['rows'][1]['source'] == 'spreadsheet'


class TestTempAndSave:
    """Test the temporary review step"""

    def _extract(self, upload, target):
        response = upload(make_result_pdf(), 'results.pdf', target=target)
        return response.get_json()['data']['tempId']

    def test_temp_requires_auth(self, client):
        response = client.get('/api/processed-results/temp/123')
        assert response.status_code == 401

    def test_get_temp(self, authenticated_client, upload):
        temp_id = self._extract(upload, authenticated_client)
        response = authenticated_client.get(f'/api/processed-results/temp/{temp_id}')
        assert response.status_code == 200
        assert response.get_json()['data']['tempId'] == temp_id

    def test_get_missing_temp(self, authenticated_client):
        response = authenticated_client.get('/api/processed-results/temp/nope')
        assert response.status_code == 404

    def test_save_requires_temp_id(self, authenticated_client):
        response = authenticated_client.post('/api/processed-results/save', json={'decision': 'save'})
        assert response.status_code == 400

    def test_save_rejects_invalid_decision(self, authenticated_client, upload):
        temp_id = self._extract(upload, authenticated_client)
        response = authenticated_client.post('/api/processed-results/save',
                                             json={'tempId': temp_id, 'decision': 'maybe'})
        assert response.status_code == 400

    def test_save_unknown_temp(self, authenticated_client):
        response = authenticated_client.post('/api/processed-results/save',
                                             json={'tempId': '1', 'decision': 'save'})
        assert response.status_code == 404

    def test_save_persists_and_clears_temp(self, app, authenticated_client, upload, temp_store, admin_user):
        temp_id = self._extract(upload, authenticated_client)
        response = authenticated_client.post('/api/processed-results/save',
                                             json={'tempId': temp_id, 'decision': 'save'})
        assert response.status_code == 201

        record = response.get_json()['data']
        assert record['fileName'] == 'results.pdf'
        assert record['processingStatus'] == 'Completed'
        assert record['metadata']['totalRows'] == 2
        assert temp_store.get(temp_id) is None

        with app.app_context():
            saved = db.session.get(ProcessedResult, record['id'])
            assert saved.uploaded_by == admin_user['id']
            assert AuditLog.query.filter_by(event_type='result_saved').count() == 1

        again = authenticated_client.post('/api/processed-results/save',
                                          json={'tempId': temp_id, 'decision': 'save'})
        assert again.status_code == 404

    def test_discard_clears_temp(self, app, authenticated_client, upload, temp_store):
        temp_id = self._extract(upload, authenticated_client)
        response = authenticated_client.post('/api/processed-results/save',
                                             json={'tempId': temp_id, 'decision': 'discard'})
        assert response.status_code == 200
        assert temp_store.get(temp_id) is None
        with app.app_context():
            assert ProcessedResult.query.count() == 0


class TestSavedResults:
    """Test listing, analysis and publishing of saved results"""

    def _save(self, client, upload):
        temp_id = upload(make_result_pdf(), 'results.pdf', target=client).get_json()['data']['tempId']
        response = client.post('/api/processed-results/save', json={'tempId': temp_id, 'decision': 'save'})
        return response.get_json()['data']['id']

    def test_list_requires_auth(self, client):
        assert client.get('/api/processed-results/list').status_code == 401

    def test_list_own_results(self, authenticated_client, faculty_client, upload):
        self._save(authenticated_client, upload)
        self._save(authenticated_client, upload)
        self._save(faculty_client, upload)

        response = authenticated_client.get('/api/processed-results/list')
        body = response.get_json()
        assert response.status_code == 200
        assert len(body['data']) == 2
        assert body['pagination']['totalItems'] == 2
        assert 'rows' not in body['data'][0]
        assert body['data'][0]['id'] > body['data'][1]['id']

    def test_other_faculty_cannot_read(self, authenticated_client, faculty_client, upload):
        result_id = self._save(authenticated_client, upload)
        response = faculty_client.get(f'/api/processed-results/{result_id}')
        assert response.status_code == 403

    def test_admin_can_read_faculty_result(self, authenticated_client, faculty_client, upload):
        result_id = self._save(faculty_client, upload)
        response = authenticated_client.get(f'/api/processed-results/{result_id}')
        assert response.status_code == 200
        assert len(response.get_json()['data']['rows']) == 2

    def test_delete(self, authenticated_client, upload):
        result_id = self._save(authenticated_client, upload)
        assert authenticated_client.delete(f'/api/processed-results/{result_id}').status_code == 200
        assert authenticated_client.get(f'/api/processed-results/{result_id}').status_code == 404

    def test_analysis(self, authenticated_client, upload):
        result_id = self._save(authenticated_client, upload)
        response = authenticated_client.post(f'/api/processed-results/{result_id}/analysis', json={'startIndex': 0})
        assert response.status_code == 200

        data = response.get_json()['data']
        assert data['overallPassPercentage'] == 50.0
        subjects = {s['subject']: s for s in data['subjectWiseResults']}
        assert subjects['MA101']['passPercentage'] == 100.0
        assert subjects['PH101']['passedStudents'] == 1
        assert data['students'][0]['regNo'] == RESULT_ROWS[1][0]

    def test_analysis_bad_start_index(self, authenticated_client, upload):
        result_id = self._save(authenticated_client, upload)
        response = authenticated_client.post(f'/api/processed-results/{result_id}/analysis', json={'startIndex': 5})
        assert response.status_code == 400

    def test_publish_and_unpublish(self, authenticated_client, upload):
        result_id = self._save(authenticated_client, upload)

        response = authenticated_client.post(f'/api/processed-results/{result_id}/publish')
        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['isPublished'] is True
        assert data['publishedAt'] is not None

        response = authenticated_client.delete(f'/api/processed-results/{result_id}/publish')
        data = response.get_json()['data']
        assert data['isPublished'] is False
        assert data['publishedAt'] is None


class TestGradeAnalysisEndpoint:
    """Test the stateless analysis endpoint"""

    def test_requires_auth(self, client):
        response = client.post('/api/analysis/grades', json={'students': []})
        assert response.status_code == 401

    def test_requires_students(self, authenticated_client):
        response = authenticated_client.post('/api/analysis/grades', json={'students': []})
        assert response.status_code == 400

    def test_rejects_non_object_body(self, authenticated_client):
        response = authenticated_client.post('/api/analysis/grades', json=[{'grades': {'MA101': 'A'}}])
        assert response.status_code == 400

    def test_rejects_grades_list(self, authenticated_client):
        response = authenticated_client.post('/api/analysis/grades', json={'students': [{'grades': ['A']}]})
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_rejects_string_subject_codes(self, authenticated_client):
        response = authenticated_client.post('/api/analysis/grades', json={
            'students': [{'regNo': '1', 'grades': {'MA101': 'A'}}],
            'subjectCodes': 'MA101',
        })
        assert response.status_code == 400

    def test_overall_pass_rate(self, authenticated_client):
        response = authenticated_client.post('/api/analysis/grades', json={
            'students': [
                {'regNo': '1', 'name': 'A', 'grades': {'MA101': 'A', 'PH101': 'U'}},
                {'regNo': '2', 'name': 'B', 'grades': {'MA101': 'B', 'PH101': 'B'}},
            ],
            'subjectCodes': ['MA101', 'PH101'],
            'startIndex': 0,
        })
        assert response.status_code == 200
        assert response.get_json()['data']['overallPassPercentage'] == 50.0

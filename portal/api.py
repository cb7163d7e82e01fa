"""
Processed results API

Upload -> extract -> review (temporary, 30 minutes) -> save or discard ->
analyse -> publish. Extraction runs inside the request; the pending result
lives in the app's TempSessionStore until the user decides.
"""
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Blueprint, request, current_app
from flask_login import login_required, current_user
from werkzeug.utils import secure_filename

from portal import db
from portal.auth import log_audit_event
from portal.models import ProcessedResult
from portal.services.grade_service import aggregate_grades, students_from_result
from portal.services.pdf_service import extract_pdf_data, extract_with_ocr
from portal.services.spreadsheet_service import SPREADSHEET_EXTENSIONS, file_extension, read_spreadsheet
from portal.services.table_service import clean_and_structure_data
from portal.utils.responses import json_response, error_response, paginate_args, pagination_meta
from portal.utils.session_store import remove_file

results_bp = Blueprint('results', __name__, url_prefix='/api/processed-results')
analysis_bp = Blueprint('analysis', __name__, url_prefix='/api/analysis')

PREVIEW_ROWS = 10


def get_temp_store():
    return current_app.extensions['temp_sessions']


def allowed_file(filename: str) -> bool:
    return file_extension(filename) in current_app.config['ALLOWED_EXTENSIONS']


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _upload_path(filename: str) -> str:
    return os.path.join(current_app.config['UPLOAD_FOLDER'], f"{uuid.uuid4().hex}_{filename}")


def _iso_from_epoch(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def extract_upload_data(path: str, filename: str) -> Optional[Dict[str, Any]]:
    """
    Spreadsheets are read directly. PDFs go through positional extraction,
    then OCR when no table was found, then the plain text layer.
    """
    if file_extension(filename) in SPREADSHEET_EXTENSIONS:
        return read_spreadsheet(path, filename)

    with open(path, "rb") as f:
        data = f.read()

    extracted = extract_pdf_data(data)
    if extracted and extracted["structuredTables"]:
        return extracted

    current_app.logger.warning("No tables found in %s by positional extraction", filename)
    if current_app.config.get('OCR_ENABLED'):
        ocr = extract_with_ocr(data, max_pages=current_app.config['OCR_MAX_PAGES'])
        if ocr:
            if extracted:
                ocr["metadata"]["pageCount"] = extracted["metadata"]["pageCount"]
            current_app.logger.info("OCR fallback produced %d tables for %s", len(ocr["structuredTables"]), filename)
            return ocr

    if extracted and extracted.get("rawText"):
        current_app.logger.warning("Falling back to plain text for %s", filename)
        return extracted
    return None


def _get_result_for_user(result_id: int):
    """Returns (record, None) or (None, error response) for owner/admin access"""
    record = db.session.get(ProcessedResult, result_id)
    if record is None:
        return None, error_response("Processed result not found", 404)
    if record.uploaded_by != current_user.id and not current_user.is_admin:
        return None, error_response("You do not have access to this result", 403)
    return record, None


# ============ API Routes ============

@results_bp.route('/test', methods=['GET'])
def test():
    return json_response({"status": "ok"}, "Processed results API is working")


@results_bp.route('/upload-extract', methods=['POST'])
def upload_extract():
    file = request.files.get('pdfFile') or request.files.get('file')
    if not file or not file.filename:
        return error_response("No file uploaded", 400)

    original_name = file.filename
    if not allowed_file(original_name):
        return error_response("Invalid file type. Only PDF, CSV and XLSX files are allowed.", 400)
    filename = secure_filename(original_name) or f"upload.{file_extension(original_name)}"

    store = get_temp_store()
    temp_id = store.new_id()
    path = _upload_path(filename)
    stored = False

    try:
        file.save(path)
        current_app.logger.info("Processing upload %s (%d bytes)", filename, os.path.getsize(path))

        extracted = extract_upload_data(path, filename)
        if not extracted:
            return error_response("Failed to extract data from the file. Please check the file format.", 400)

        structured = clean_and_structure_data(extracted)
        if not structured or not structured["rows"]:
            return error_response("No data could be extracted from the file", 400)

        # the file is removed with the entry on save, discard or expiry
        stored = True
        session = store.set(temp_id, {
            "extractedData": structured,
            "fileName": original_name,
            "originalFile": path,
        })
        meta = structured["metadata"]
        current_app.logger.info(
            "Extracted %d rows, %d columns from %s (method=%s, confidence=%s)",
            meta["totalRows"], len(structured["headers"]), filename, meta.get("extractionMethod"), meta["confidence"],
        )
        return json_response({
            "tempId": temp_id,
            "fileName": original_name,
            "extractedData": structured,
            "preview": {
                "totalRows": meta["totalRows"],
                "headers": structured["headers"],
                "sampleRows": structured["rows"][:PREVIEW_ROWS],
                "metadata": meta,
            },
            "expiresAt": _iso_from_epoch(session.expiry_time),
        }, "File processed successfully. Review the data and choose to save or discard.")
    except ValueError as e:
        return error_response(str(e), 400)
    except Exception as e:
        current_app.logger.exception("Upload extraction failed for %s", filename)
        return error_response("Error processing file", 500, error=e)
    finally:
        if not stored:
            store.release(temp_id)
            remove_file(path)


@results_bp.route('/temp/<temp_id>', methods=['GET'])
@login_required
def get_temp(temp_id):
    session = get_temp_store().get(temp_id)
    if session is None:
        return error_response("Temporary data not found or expired", 404)
    return json_response({
        **session.to_dict(),
        "expiresAt": _iso_from_epoch(session.expiry_time),
    }, "Temporary data retrieved")


@results_bp.route('/save', methods=['POST'])
@login_required
def save_extracted():
    data = _json_body()
    temp_id = str(data.get('tempId') or '').strip()
    decision = data.get('decision')

    if not temp_id:
        return error_response("tempId is required", 400)
    if decision not in ('save', 'discard'):
        return error_response("decision must be 'save' or 'discard'", 400)

    store = get_temp_store()
    session = store.get(temp_id)
    if session is None:
        return error_response("Temporary data not found or expired", 404)

    if decision == 'discard':
        store.delete(temp_id)
        log_audit_event('result_discarded', f'Discarded extraction of {session.file_name}')
        return json_response({"tempId": temp_id}, "Data discarded successfully")

    try:
        record = ProcessedResult.from_extracted(session.extracted_data, session.file_name, current_user.id)
        db.session.add(record)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Saving extraction %s failed", temp_id)
        return error_response("Error saving data", 500, error=e)

    store.delete(temp_id)
    log_audit_event('result_saved', f'Saved {record.file_name} as result {record.id}')
    return json_response(record.to_dict(), "Data saved successfully", 201)


@results_bp.route('/list', methods=['GET'])
@login_required
def list_results():
    page, limit = paginate_args(request)
    query = ProcessedResult.query.filter_by(uploaded_by=current_user.id).order_by(
        ProcessedResult.uploaded_at.desc(), ProcessedResult.id.desc()
    )
    total = query.count()
    records = query.offset((page - 1) * limit).limit(limit).all()
    return json_response(
        [r.to_dict(include_rows=False) for r in records],
        "Processed results retrieved",
        pagination=pagination_meta(page, limit, total),
    )


@results_bp.route('/<int:result_id>', methods=['GET'])
@login_required
def get_result(result_id):
    record, err = _get_result_for_user(result_id)
    if err:
        return err
    return json_response(record.to_dict(), "Processed result retrieved")


@results_bp.route('/<int:result_id>', methods=['DELETE'])
@login_required
def delete_result(result_id):
    record, err = _get_result_for_user(result_id)
    if err:
        return err
    db.session.delete(record)
    db.session.commit()
    log_audit_event('result_deleted', f'Deleted result {result_id}')
    return json_response({"id": result_id}, "Processed result deleted")


@results_bp.route('/<int:result_id>/analysis', methods=['POST'])
@login_required
def analyse_result(result_id):
    record, err = _get_result_for_user(result_id)
    if err:
        return err

    data = _json_body()
    try:
        students, subject_codes = students_from_result(record.headers or [], record.rows or [])
        analysis = aggregate_grades(
            students,
            data.get('subjectCodes') or subject_codes,
            start_index=data.get('startIndex', 0),
        )
    except ValueError as e:
        return error_response(str(e), 400)
    return json_response({"resultId": record.id, "students": students, **analysis}, "Analysis complete")


@results_bp.route('/<int:result_id>/publish', methods=['POST', 'DELETE'])
@login_required
def publish_result(result_id):
    record, err = _get_result_for_user(result_id)
    if err:
        return err

    if request.method == 'POST':
        record.publish()
        message, event = "Result published", 'result_published'
    else:
        record.unpublish()
        message, event = "Result unpublished", 'result_unpublished'
    db.session.commit()
    log_audit_event(event, f'{message}: {record.id}')
    return json_response(record.to_dict(include_rows=False), message)


@analysis_bp.route('/grades', methods=['POST'])
@login_required
def analyse_grades():
    data = _json_body()
    students = data.get('students')
    if not isinstance(students, list) or not students:
        return error_response("students must be a non-empty list", 400)
    if any(not isinstance(s, dict) for s in students):
        return error_response("each student must be an object", 400)
    try:
        analysis = aggregate_grades(students, data.get('subjectCodes'), start_index=data.get('startIndex', 0))
    except ValueError as e:
        return error_response(str(e), 400)
    return json_response(analysis, "Analysis complete")

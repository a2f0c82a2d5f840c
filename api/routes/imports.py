from __future__ import annotations

import json

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from questions_hub.importing import ImportJobRecord, ValidationError
from api.dependencies import get_import_service

router = APIRouter(prefix="/imports", tags=["imports"])


def _job_payload(job: ImportJobRecord) -> dict:
    return {
        "id": job.id,
        "file_name": job.input_file_name,
        "file_size_bytes": job.input_file_size_bytes,
        "status": job.status,
        "current_step": job.current_step,
        "progress": job.progress,
        "attempts": job.attempts,
        "next_retry_at": job.next_retry_at,
        "package_id": job.package_id,
        "error_message": job.error_message,
        "warnings": json.loads(job.warnings_json) if job.warnings_json else [],
        "created_at": job.created_at,
        "started_at": job.started_at,
        "finished_at": job.finished_at,
    }


@router.post("")
async def upload_package(file: UploadFile = File(...), owner_id: str = Form(...)):
    payload = await file.read()
    try:
        job = get_import_service().enqueue(owner_id, file.filename or "", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.user_message)
    return {"job_id": job.id, "status": job.status}


@router.get("")
def list_imports(owner_id: str, limit: int = 10):
    return [_job_payload(job) for job in get_import_service().list_jobs(owner_id, limit)]


@router.get("/{job_id}")
def get_import(job_id: str, owner_id: str):
    job = get_import_service().get_job(job_id, owner_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    return _job_payload(job)


@router.post("/{job_id}/cancel")
def cancel_import(job_id: str, owner_id: str = Form(...)):
    service = get_import_service()
    if not service.get_job(job_id, owner_id):
        raise HTTPException(status_code=404, detail=f"Import job not found: {job_id}")
    if not service.cancel(job_id, owner_id):
        raise HTTPException(status_code=409, detail="Скасувати можна лише задачу в черзі або в обробці")
    return {"status": "cancelled", "job_id": job_id}

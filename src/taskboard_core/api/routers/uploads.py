"""Attachment upload, download and deletion endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from taskboard_core import crud, models, permissions, schemas
from taskboard_core.config import get_settings
from taskboard_core.errors import AccessDenied, AttachmentNotFound, ValidationError
from taskboard_core.storage import LocalFileStorage

from ...database import get_db
from ..dependencies import get_current_user, get_storage, project_access, task_access

logger = logging.getLogger("taskboard-core.uploads")

router = APIRouter(tags=["uploads"])


def _store_files(storage: LocalFileStorage, files: list[UploadFile]) -> list[dict]:
    """Validate and write every upload, or none of them."""
    max_files = get_settings().max_files_per_upload
    if not files:
        raise ValidationError("No files uploaded")
    if len(files) > max_files:
        raise ValidationError(f"Too many files. Maximum {max_files} files per upload.")

    for upload in files:
        storage.check_type(upload.content_type)

    stored: list[dict] = []
    try:
        for upload in files:
            stored.append(storage.save(upload.file, upload.filename, upload.content_type))
    except Exception:
        storage.remove_all(stored)
        raise
    return stored


def _record(
    db: Session,
    storage: LocalFileStorage,
    stored: list[dict],
    user_id,
    task: Optional[models.Task] = None,
    project: Optional[models.Project] = None,
) -> list[models.Attachment]:
    try:
        return crud.create_attachments(db, stored, user_id, task=task, project=project)
    except Exception as e:
        logger.error(f"Error recording uploads: {e}", exc_info=True)
        db.rollback()
        storage.remove_all(stored)
        raise


def _files_data(attachments: list[models.Attachment]) -> dict:
    return {"files": [schemas.AttachmentResponse.model_validate(a) for a in attachments]}


@router.post("/task/{task_id}", response_model=schemas.ApiResponse[schemas.UploadData])
def upload_task_files(
    files: list[UploadFile] = File(..., description="Up to 5 files, 10MB each"),
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """
    Upload files to a task (multipart field **files**).

    Allowed types: images, PDF, Office documents, text/CSV and archives.
    """
    stored = _store_files(storage, files)
    attachments = _record(db, storage, stored, current_user.id, task=access.task)
    logger.info(f"Uploaded {len(attachments)} file(s) to task {access.task.id}")
    return {"success": True, "message": "Files uploaded successfully", "data": _files_data(attachments)}


@router.post("/project/{project_id}", response_model=schemas.ApiResponse[schemas.UploadData])
def upload_project_files(
    files: list[UploadFile] = File(..., description="Up to 5 files, 10MB each"),
    access: permissions.ProjectAccess = Depends(project_access),
    current_user: models.User = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Upload files to a project (multipart field **files**)."""
    stored = _store_files(storage, files)
    attachments = _record(db, storage, stored, current_user.id, project=access.project)
    logger.info(f"Uploaded {len(attachments)} file(s) to project {access.project.id}")
    return {"success": True, "message": "Files uploaded successfully", "data": _files_data(attachments)}


@router.delete("/task/{task_id}/{filename}", response_model=schemas.ApiResponse[None])
def delete_task_file(
    filename: str,
    access: permissions.TaskAccess = Depends(task_access),
    current_user: models.User = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Delete a task attachment. Allowed for the uploader, the task creator or the assignee."""
    attachment = crud.get_attachment_by_filename(db, filename)
    if not attachment or attachment.task_id != access.task.id:
        raise AttachmentNotFound()

    task = access.task
    if current_user.id not in (attachment.uploaded_by_id, task.created_by_id, task.assigned_to_id):
        raise AccessDenied("You do not have permission to delete this file")

    path = attachment.path
    crud.delete_attachment(db, attachment, current_user.id)
    storage.remove(path)
    logger.info(f"Deleted file {filename} from task {task.id}")
    return {"success": True, "message": "File deleted successfully"}


@router.delete("/project/{project_id}/{filename}", response_model=schemas.ApiResponse[None])
def delete_project_file(
    filename: str,
    access: permissions.ProjectAccess = Depends(project_access),
    current_user: models.User = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Delete a project attachment. Allowed for the uploader or a project owner/manager."""
    attachment = crud.get_attachment_by_filename(db, filename)
    if not attachment or attachment.project_id != access.project.id:
        raise AttachmentNotFound()

    if attachment.uploaded_by_id != current_user.id and not access.can_edit:
        raise AccessDenied("You do not have permission to delete this file")

    path = attachment.path
    crud.delete_attachment(db, attachment, current_user.id)
    storage.remove(path)
    logger.info(f"Deleted file {filename} from project {access.project.id}")
    return {"success": True, "message": "File deleted successfully"}


@router.get("/{filename}")
def download_file(
    filename: str,
    current_user: models.User = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Download an attachment. Requires access to the owning task or project."""
    attachment = crud.get_attachment_by_filename(db, filename)
    if not attachment:
        raise AttachmentNotFound()

    if attachment.task_id is not None:
        permissions.check_task_access(db, current_user.id, attachment.task_id)
    else:
        permissions.check_project_access(db, current_user.id, attachment.project_id)

    if not storage.exists(attachment.path):
        logger.warning(f"Attachment {filename} is missing from storage")
        raise AttachmentNotFound()

    return FileResponse(
        attachment.path,
        media_type="application/octet-stream",
        filename=attachment.original_name,
    )

"""
FastAPI router for manual imports: preview pasted text or an uploaded file,
then confirm to reconcile.
"""

from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File, Form
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from studysync.core.database import get_db
from studysync.schemas.sync import (
    ImportPreviewRequest, ImportPreviewResponse, ImportConfirmRequest,
    AssignmentSchema, GradeSchema, LessonSchema, SyncResultResponse
)
from studysync.services.sync.import_service import ImportService, UnsupportedImportFile
from studysync.services.sync.types import ParseOutcome

router = APIRouter()


def _preview_response(outcome: ParseOutcome) -> ImportPreviewResponse:
    return ImportPreviewResponse(
        format=outcome.format.value if outcome.format else None,
        assignments=[AssignmentSchema.model_validate(a) for a in outcome.assignments],
        grades=[GradeSchema.model_validate(g) for g in outcome.grades],
        lessons=[LessonSchema.model_validate(lesson) for lesson in outcome.lessons],
        warnings=outcome.warnings,
        summary=outcome.summary(),
    )


@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_import(
    request: ImportPreviewRequest,
    db: AsyncSession = Depends(get_db)
):
    """Parse pasted text without saving anything."""
    outcome = ImportService(db).preview(request.text, hint=request.format)
    return _preview_response(outcome)


@router.post("/preview/file", response_model=ImportPreviewResponse)
async def preview_import_file(
    file: UploadFile = File(...),
    format: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db)
):
    """Parse an uploaded .txt, .csv or .json export."""
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file must be UTF-8 text"
        )

    try:
        outcome = ImportService(db).preview(text, filename=file.filename or "", hint=format)
    except UnsupportedImportFile as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return _preview_response(outcome)


@router.post("/confirm", response_model=SyncResultResponse)
async def confirm_import(
    request: ImportConfirmRequest,
    db: AsyncSession = Depends(get_db)
):
    """Reconcile previewed records into the planner."""
    result = await ImportService(db).confirm(
        [assignment.to_record() for assignment in request.assignments],
        [grade.to_record() for grade in request.grades],
    )
    return SyncResultResponse(**result.to_dict())

import logging
from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from core.auth import Actor, current_actor
from core.reconcile import Reconciler, UploadedFile, get_reconciler
from schemas.reconcile import ReconcileSummary

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ReconcileSummary)
async def reconcile_covers(
    files: List[UploadFile] = File(...),
    overwrite: bool = Form(False),
    actor: Actor = Depends(current_actor),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Match uploaded cover images to inventory items by file name (ISBN first, then title)
    and link each unique match. Conflicts, skips and failures are reported per file.
    """
    uploads = []
    for f in files:
        uploads.append(
            UploadedFile(
                name=f.filename or "",
                data=await f.read(),
                content_type=f.content_type,
            )
        )

    try:
        return await reconciler.reconcile(uploads, overwrite=overwrite, actor=actor)
    except Exception:
        # Only the inventory snapshot can fail the whole batch
        logger.exception("Cover reconciliation failed before processing files")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Critical sync error",
        )

import logging
from fastapi import APIRouter, Depends, HTTPException, status

from ..services.uploads import UploadAdapter, UploadRequest, UploadValidationError, get_upload_adapter

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/uploads",
    tags=["Uploads"]
)

@router.post("/presign")
def create_upload_target(
    request: UploadRequest,
    uploads: UploadAdapter = Depends(get_upload_adapter)
):
    try:
        target = uploads.create_upload(request)
    except UploadValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"errors": {"upload": str(e)}})
    except Exception:
        logger.exception("Error generating %s upload target", uploads.name)
        raise HTTPException(
            status_code=500,
            detail={"errors": {"upload": "Failed to generate upload URL"}}
        )

    return {"success": True, "data": target}

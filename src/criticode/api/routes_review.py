# Author: Bradley R. Kinnard — paste it or upload it, we'll judge it

"""Analysis endpoints. Anonymous callers welcome, they just get a tighter limit and no history."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile

from src.criticode.api.dependencies import OptionalIdentity, client_ip
from src.criticode.api.schemas import ERROR_RESPONSES, AnalyzeRequest, AnalyzeResponse, UploadResponse
from src.criticode.services.review_pipeline import ReviewPipeline, get_pipeline
from src.criticode.utils.validation import (
    MAX_UPLOAD_BYTES,
    detect_language,
    validate_analyze_request,
    validate_upload_content,
    validate_upload_name,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/review", tags=["review"], responses=ERROR_RESPONSES)

Pipeline = Annotated[ReviewPipeline, Depends(get_pipeline)]


@router.post("/analyze", response_model=AnalyzeResponse, response_model_exclude_none=True)
async def analyze_code(
    body: AnalyzeRequest,
    request: Request,
    response: Response,
    identity: OptionalIdentity,
    pipeline: Pipeline,
) -> AnalyzeResponse:
    """
    Run the code through the AI reviewer.
    With a valid bearer token the result is also saved to the caller's history.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    language, file_name = validate_analyze_request(body.code, body.language, body.file_name)

    log.info(f"analyze | req={request_id} lang={language} len={len(body.code)} auth={identity is not None}")

    outcome = await pipeline.run(
        code=body.code,
        language=language,
        file_name=file_name,
        identity=identity,
        client_ip=client_ip(request),
    )
    response.headers.update(outcome.admission.headers())

    return AnalyzeResponse(analysis=outcome.analysis, review_id=outcome.review_id, saved=outcome.saved)


@router.post("/upload", response_model=UploadResponse, response_model_exclude_none=True)
async def upload_code(
    request: Request,
    response: Response,
    identity: OptionalIdentity,
    pipeline: Pipeline,
    file: UploadFile | None = File(default=None),
) -> UploadResponse:
    """Same as /analyze but the code comes from a file. Language comes from the extension."""
    request_id = getattr(request.state, "request_id", "unknown")
    file_name = validate_upload_name(file.filename if file else None)

    # one byte past the cap is enough to know it's too big
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    await file.close()
    code = validate_upload_content(data)
    language = detect_language(file_name)

    log.info(f"upload | req={request_id} file={file_name} size={len(data)} lang={language}")

    outcome = await pipeline.run(
        code=code,
        language=language,
        file_name=file_name,
        identity=identity,
        client_ip=client_ip(request),
    )
    response.headers.update(outcome.admission.headers())

    return UploadResponse(
        analysis=outcome.analysis,
        review_id=outcome.review_id,
        saved=outcome.saved,
        file_name=file_name,
        file_size=len(data),
        language=language,
    )

"""
Request plumbing shared by the PDF endpoints.

`handle_pdf_processing` accepts the upload, checks it before any engine work
starts, runs the endpoint under a deadline and turns engine exceptions into
HTTP responses.
"""

import logging
import asyncio
from functools import wraps
from typing import Callable, Optional, Tuple, Type
from fastapi import UploadFile, HTTPException, Request

from utils.validation import (
    validate_file_content,
    validate_processing_environment,
    PdfValidationError,
    PageOutOfRange,
    InvalidBox,
    RenderFailure,
    VALIDATION_CONSTANTS
)

logger = logging.getLogger(__name__)

# Engine exception -> (status, detail prefix, log level)
ERROR_STATUS: Tuple[Tuple[Type[Exception], int, str, int], ...] = (
    (PdfValidationError, 400, "PDF validation failed: ", logging.WARNING),
    (PageOutOfRange, 404, "", logging.WARNING),
    (InvalidBox, 422, "Invalid bounding box: ", logging.WARNING),
    (RenderFailure, 500, "Render failed: ", logging.ERROR),
)


def _http_error_for(exc: Exception, filename: str) -> Optional[HTTPException]:
    for exc_type, status, prefix, level in ERROR_STATUS:
        if isinstance(exc, exc_type):
            logger.log(level, f"{filename}: {type(exc).__name__}: {exc}")
            return HTTPException(status_code=status, detail=f"{prefix}{exc}")
    return None


async def _read_checked_upload(file: Optional[UploadFile]) -> bytes:
    """Read the upload and reject anything that is not a plausible PDF (400)."""
    if not file:
        raise HTTPException(status_code=400, detail="File parameter is required")
    if not file.filename or not file.filename.lower().endswith('.pdf'):
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    try:
        content = await file.read()
    except Exception as e:
        logger.error(f"Could not read upload {file.filename}: {e}")
        raise HTTPException(status_code=400, detail=f"Error reading uploaded file: {e}")

    ok, problem = validate_file_content(content, max_size_mb=VALIDATION_CONSTANTS['MAX_FILE_SIZE_MB'])
    if not ok:
        logger.warning(f"Rejected upload {file.filename}: {problem}")
        raise HTTPException(status_code=400, detail=problem)
    return content


def handle_pdf_processing(func: Callable) -> Callable:
    """
    Wrap a PDF endpoint.

    The endpoint must take `request: Request` and `file: UploadFile` as
    keyword arguments, and may take `processing_timeout`. Before it runs,
    `request.state.file_content` and `request.state.filename` are set.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request: Request = kwargs.get('request')
        if not request:
            raise HTTPException(
                status_code=500,
                detail="Endpoint decorated with handle_pdf_processing must accept 'request: Request'"
            )

        file: UploadFile = kwargs.get('file')
        content = await _read_checked_upload(file)

        ready, reason = validate_processing_environment()
        if not ready:
            logger.error(f"Not processing {file.filename}: {reason}")
            raise HTTPException(status_code=503, detail=reason)

        request.state.file_content = content
        request.state.filename = file.filename

        deadline = kwargs.get('processing_timeout') or VALIDATION_CONSTANTS['MAX_PROCESSING_TIME_SECONDS']
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=deadline)
        except asyncio.TimeoutError:
            logger.error(f"{file.filename} still processing after {deadline}s, giving up")
            raise HTTPException(status_code=408, detail=f"PDF processing timed out after {deadline} seconds.")
        except HTTPException:
            raise
        except Exception as e:
            mapped = _http_error_for(e, file.filename)
            if mapped is not None:
                raise mapped
            logger.exception(f"Unexpected error processing {file.filename}")
            raise HTTPException(status_code=500, detail=f"Internal server error during PDF processing: {e}")

    return wrapper

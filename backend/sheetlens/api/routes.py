import logging
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from slowapi.errors import RateLimitExceeded

from sheetlens.core.cache import get_session_cache, new_session_id
from sheetlens.core.config import get_settings
from sheetlens.core.errors import ErrorCodes, ParseError, get_error_response
from sheetlens.core.sanitization import sanitize_filename, sanitize_for_logging
from sheetlens.core.schemas import AnalysisResult, RegenerationOutcome
from sheetlens.services.ai_client import get_ai_client
from sheetlens.services.analysis import AnalysisSession, GenerateFn, analyze_rows
from sheetlens.services.parser import parse_file

logger = logging.getLogger(__name__)

router = APIRouter()


def get_generate() -> GenerateFn:
    """AI text generation used by the pipeline (overridden in tests)."""
    return get_ai_client().generate


def _error(status_code: int, code: str, request: Request, detail: str = None) -> HTTPException:
    error_info = get_error_response(code, detail)
    error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
    return HTTPException(status_code=status_code, detail=error_info)


def _get_session(session_id: str, request: Request) -> AnalysisSession:
    cache = get_session_cache()
    session = cache.get(session_id)
    if session is None:
        raise _error(404, ErrorCodes.SESSION_NOT_FOUND, request)
    cache.touch(session_id)
    return session


@router.get("/health")
async def health_check():
    return {"status": "ok"}


async def _process_upload(file: UploadFile, request: Request, generate: GenerateFn) -> AnalysisResult:
    settings = get_settings()
    safe_filename = sanitize_filename(file.filename) if file.filename else 'unknown'

    try:
        rows = await parse_file(file, settings)
    except ParseError as e:
        status_code = 413 if e.code == ErrorCodes.FILE_TOO_LARGE else 400
        logger.info(f"Rejected upload {sanitize_for_logging(safe_filename)}: {e}")
        raise _error(status_code, e.code, request, str(e))

    session_id = new_session_id()
    session = await analyze_rows(
        rows,
        generate,
        settings,
        session_id=session_id,
        filename=safe_filename,
    )
    get_session_cache().set(session_id, session, ttl=settings.session_ttl_seconds)

    logger.info(
        f"Successfully processed file: {sanitize_for_logging(safe_filename)}, "
        f"{len(session.charts)} charts, {len(session.cards)} cards, session {session_id}"
    )
    return session.to_result()


@router.post("/upload", response_model=AnalysisResult)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    generate: GenerateFn = Depends(get_generate),
):
    """
    Upload a CSV or XLSX file and get chart and card recommendations.

    Rate limited per IP address (RATE_LIMIT_PER_MINUTE).
    """
    limiter = request.app.state.limiter
    app_settings = request.app.state.settings

    @limiter.limit(f"{app_settings.rate_limit_per_minute}/minute")
    async def _rate_limited_handler(request: Request):
        return await _process_upload(file, request, generate)

    try:
        return await _rate_limited_handler(request)
    except (HTTPException, RateLimitExceeded):
        raise
    except Exception as e:
        safe_filename = sanitize_for_logging(sanitize_filename(file.filename) if file.filename else 'unknown')
        logger.error(f"Unexpected error processing file {safe_filename}: {e}", exc_info=True)
        raise _error(500, ErrorCodes.PROCESSING_ERROR, request)


@router.get("/sessions/{session_id}", response_model=AnalysisResult)
async def get_session(session_id: str, request: Request):
    """Current charts and cards of an analysis session."""
    return _get_session(session_id, request).to_result()


@router.post("/sessions/{session_id}/charts/{chart_id}/regenerate", response_model=RegenerationOutcome)
async def regenerate_chart(session_id: str, chart_id: str, request: Request):
    """
    Replace one chart with an alternative the user has not seen yet.

    Returns 429 once the chart has used up its alternatives.
    """
    session = _get_session(session_id, request)
    outcome = await session.controller.regenerate(chart_id)

    if outcome.status == "unknown_chart":
        raise _error(404, ErrorCodes.CHART_NOT_FOUND, request)
    if outcome.status == "limit_reached":
        raise _error(429, ErrorCodes.REGENERATION_LIMIT, request, outcome.warning)

    logger.info(f"Regenerate {sanitize_for_logging(chart_id)} in session {session_id}: {outcome.status}")
    return outcome

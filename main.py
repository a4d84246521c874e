from fastapi import FastAPI, Request
import os
import logging
import time
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Dict

import psutil
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from excel_generator import ExportOptions, ExportRequest, SpreadsheetGenerator
from utils.result import Result

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

settings = get_settings()

# Create logs directory if it doesn't exist
os.makedirs(settings.log_dir, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format=LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Add file handler to the root logger so pipeline logs end up in the file as well
log_file_path = os.path.join(settings.log_dir, f"app_{datetime.now().strftime('%Y%m%d')}.log")
file_handler = logging.FileHandler(log_file_path)
file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
logging.getLogger().addHandler(file_handler)


# Initialize FastAPI app with metadata
app = FastAPI(
    title="Excel Export Service",
    description="API for converting JSON records into Excel workbooks",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["content-type", "authorization"],
)


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """
    Reject requests whose declared body size exceeds the configured limit.

    The check runs before the body is read, so an oversized upload never
    reaches JSON decoding. Only the Content-Length header is checked: a
    chunked upload without one is not counted here and has to be capped by
    the proxy or server in front of the service.
    """
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            declared_size = int(content_length)
        except ValueError:
            result = Result.invalid_input("Invalid Content-Length header")
            return JSONResponse(status_code=result.status_code.value, content=result.to_error_envelope())

        if declared_size > settings.max_body_size_bytes:
            logger.warning(
                f"Rejected request body of {declared_size} bytes",
                extra={"path": request.url.path, "limit_bytes": settings.max_body_size_bytes}
            )
            result = Result.payload_too_large(settings.max_body_size_bytes)
            return JSONResponse(status_code=result.status_code.value, content=result.to_error_envelope())

    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render routing errors (404, 405, ...) with the standard error envelope."""
    message = exc.detail if isinstance(exc.detail, str) else HTTPStatus(exc.status_code).phrase
    result = Result.fail(message, status_code=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=result.to_error_envelope(),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report a body that is not valid JSON or has the wrong shape as a client error."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}")
    message = "Invalid request body: " + "; ".join(problems)

    logger.warning(message, extra={"path": request.url.path})
    result = Result.invalid_input(message)
    return JSONResponse(status_code=result.status_code.value, content=result.to_error_envelope())


def content_disposition(filename: str) -> str:
    """
    Build an attachment Content-Disposition header for the download name.

    Args:
        filename: Advisory file name from the request options

    Returns:
        Header value with quotes and line breaks stripped from the name
    """
    safe_name = "".join(ch for ch in filename if ch not in '"\r\n') or "export.xlsx"
    return f'attachment; filename="{safe_name}"'


def get_memory_usage() -> Dict[str, int]:
    """
    Memory usage of the current process in kilobytes.

    Returns:
        dict: ``rss`` (resident set size) and ``virtual`` (virtual memory size)
    """
    memory = psutil.Process(os.getpid()).memory_info()
    return {
        "rss": memory.rss // 1024,
        "virtual": memory.vms // 1024
    }


def build_excel_response(export_request: ExportRequest) -> Response:
    """
    Run the generation pipeline and turn its Result into an HTTP response.

    Args:
        export_request: Decoded request with records and options

    Returns:
        Response: The xlsx file on success, otherwise a JSON error envelope
    """
    start_time = time.time()
    result = SpreadsheetGenerator.convert_to_spreadsheet(export_request.data, export_request.options)

    if result.is_failure():
        logger.error(f"Excel generation failed: {result.error}")
        return JSONResponse(status_code=result.status_code.value, content=result.to_error_envelope())

    duration = time.time() - start_time
    logger.info(
        f"Excel generated successfully in {duration:.2f}s",
        extra={"record_count": len(export_request.data), "duration": duration}
    )
    return Response(
        content=result.data,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": content_disposition(export_request.options.filename)}
    )


# API Endpoints
@app.post(
    "/generate-excel",
    tags=["Excel Generation"],
    response_class=Response
)
def generate_excel(export_request: ExportRequest):
    """
    Convert an array of JSON records into an xlsx workbook.

    Columns come from ``options.headers`` when given, otherwise from the
    sorted keys of the first record. The whole file is built in memory and
    returned in one response.

    Returns:
        Response: The workbook with the spreadsheetml content type, or
        ``{"success": false, "message": ...}`` with status 500 on failure
    """
    logger.info(f"Starting Excel generation for {len(export_request.data)} records")
    return build_excel_response(export_request)


@app.get("/health", tags=["Service"])
async def health():
    """Health check used by container orchestration."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version
    }


@app.get("/status", tags=["Service"])
async def service_status():
    """Report that the service is running, with a UTC timestamp and process memory usage."""
    return {
        "service": settings.service_name,
        "status": "running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "memory_usage": get_memory_usage()
    }


@app.get("/test", tags=["Excel Generation"], response_class=Response)
def test_generation():
    """
    Generate a workbook from a fixed two-record sample.

    Useful to check that the spreadsheet pipeline works end to end without
    preparing a request body.
    """
    logger.info("Test endpoint called")

    sample_request = ExportRequest(
        data=[
            {
                "id": 1,
                "name": "John Doe",
                "email": "john@example.com",
                "age": 30,
                "city": "Jakarta"
            },
            {
                "id": 2,
                "name": "Jane Smith",
                "email": "jane@example.com",
                "age": 25,
                "city": "Surabaya"
            }
        ],
        options=ExportOptions(filename="test.xlsx", sheet_name="Test")
    )
    return build_excel_response(sample_request)


# Run the application if executed directly
if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting {settings.service_name} v{settings.service_version} on http://{settings.host}:{settings.port}")
    uvicorn.run("main:app", host=settings.host, port=settings.port)

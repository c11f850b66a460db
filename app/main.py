"""
FastAPI Application - Taiga Timeline Time Extractor
"""

import json
import logging
import platform
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from app.errors import FatalError, ValidationError
from app.logging_config import setup_logging
from app.pipeline import FATAL_MESSAGE, parse_request, run_extraction
from app.streaming import SSE_HEADERS, stream_extraction

logger = logging.getLogger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield


app = FastAPI(title="Taiga Timeline Extractor API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Cache-Control"],
)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _validation_error(e: ValidationError) -> JSONResponse:
    logger.warning(f"⚠️ Rejected extraction request: {e}")
    if e.field == "body":
        return _error(400, str(e))
    return _error(400, str(e), field=e.field)


# -------------------------------------------------
# Extraction Endpoints
# -------------------------------------------------
@app.post("/timeline/extract", tags=["Extraction"])
async def extract_timeline(request: Request):
    """Run a full extraction and return the report as one JSON document."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "Invalid JSON input")

    try:
        extraction_request = parse_request(body)
    except ValidationError as e:
        return _validation_error(e)

    try:
        report = await run_in_threadpool(run_extraction, extraction_request)
    except FatalError as e:
        logger.error(f"❌ Timeline extraction error: {e}")
        return _error(500, str(e) or FATAL_MESSAGE)

    return report.to_dict()


@app.get("/timeline/extract", tags=["Extraction"])
def stream_timeline(request: Request):
    """Stream extraction progress as Server-Sent Events (`?stream=true`)."""
    params = request.query_params
    if params.get("stream") != "true":
        return {
            "status": "OK",
            "message": "Timeline API is working",
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "python_version": platform.python_version(),
        }

    try:
        extraction_request = parse_request(
            {
                "baseUrl": params.get("baseUrl", ""),
                "authToken": params.get("authToken", ""),
                "userId": params.get("userId", ""),
            }
        )
    except ValidationError as e:
        return _validation_error(e)

    logger.info(f"📡 Starting timeline extraction for user {extraction_request.user_id} (streaming mode)")
    return StreamingResponse(
        stream_extraction(extraction_request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.options("/timeline/extract", include_in_schema=False)
def extract_options():
    # Preflights carrying CORS headers are answered by the middleware
    return Response(status_code=200)


@app.api_route("/timeline/extract", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
def method_not_allowed():
    return _error(405, "Method not allowed")


if __name__ == "__main__":
    import uvicorn

    # Streaming runs can take minutes; keep idle connections open long enough
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=300,
        log_level="info",
    )

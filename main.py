from contextlib import asynccontextmanager
from datetime import date
import logging
import time

import httpx
from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.responses import HTMLResponse

import vin_app.models as model
from vin_app import spreadsheet
from vin_app.config import settings
from vin_app.db import engine, get_db, init_db
from vin_app.exceptions import SpreadsheetError, VinError, VinValidationError
from vin_app.ocr import VisionClient
from vin_app.store import VinStore
from vin_app.validation import utcnow

logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and the OCR HTTP client for the lifetime of the app."""
    logger.info("Starting VIN Tracker API...")
    init_db()
    app.state.started_at = time.monotonic()
    async with httpx.AsyncClient(timeout=settings.ocr_timeout) as http_client:
        app.state.ocr_client = VisionClient(
            api_key=settings.google_vision_api_key,
            api_url=settings.vision_api_url,
            http_client=http_client,
        )
        if not settings.google_vision_api_key:
            logger.warning("GOOGLE_VISION_API_KEY is not set, OCR requests will fail")
        yield
    engine.dispose()
    logger.info("VIN Tracker API stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VinError)
async def vin_error_handler(request: Request, exc: VinError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.warning(f"Rejected malformed request: {details}")
    return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request: {details}"})


def get_store(db: Session = Depends(get_db)) -> VinStore:
    """
    Dependency function to get a VIN store bound to the request's session.
    """
    return VinStore(db)


def get_ocr_client(request: Request) -> VisionClient:
    return request.app.state.ocr_client


@app.post("/api/ocr/process", response_model=model.OcrResponse, response_model_exclude_none=True)
async def process_image(
    ocr_request: model.OcrRequest, ocr_client: VisionClient = Depends(get_ocr_client)
):
    """
    Endpoint to extract a VIN from a photographed image.

    Args:
        ocr_request (model.OcrRequest): The image as a data URL or base64 string.
        ocr_client (VisionClient): The OCR adapter, injected via dependency injection.

    Returns:
        model.OcrResponse: The VIN found, if any, and the detected text.
    """
    logger.info("Received OCR request")
    if not ocr_request.image:
        raise VinValidationError("No image provided")

    result = await ocr_client.extract_vin(ocr_request.image)

    if result.found:
        return model.OcrResponse(success=True, vin=result.vin, all_text=result.raw_text)
    if result.raw_text:
        return model.OcrResponse(success=False, message="No VIN found", all_text=result.raw_text)
    return model.OcrResponse(success=False, message="No text detected")


@app.get("/api/vins", response_model=model.VinListResponse)
async def list_vins(store: VinStore = Depends(get_store)):
    """
    Endpoint to list every VIN record, newest first.
    """
    records = store.list_all()
    logger.info(f"Returning {len(records)} VIN records")
    return model.VinListResponse(vins=[model.VinOut.from_record(record) for record in records])


@app.post("/api/vins", response_model=model.VinPostResponse, status_code=201)
async def create_vin(
    vin_request: model.VinPostRequest, request: Request, store: VinStore = Depends(get_store)
):
    """
    Endpoint to record a new VIN.

    Args:
        vin_request (model.VinPostRequest): The VIN code, capture date and user agent.
        request (Request): The incoming request, used for the client address.
        store (VinStore): The VIN store, injected via dependency injection.

    Returns:
        model.VinPostResponse: The stored record.
    """
    logger.info("Received VIN creation request")
    ip_address = request.client.host if request.client else None
    record = store.create(
        vin_request.code,
        recorded_at=vin_request.date,
        user_agent=vin_request.user_agent,
        ip_address=ip_address,
    )
    logger.info(f"VIN {record.code} recorded with id {record.id}")
    return model.VinPostResponse(message="VIN recorded successfully", vin=model.VinOut.from_record(record))


@app.get("/api/vins/search", response_model=model.VinListResponse)
async def search_vins(
    q: str | None = None,
    date_from: date | None = Query(None, alias="dateFrom"),
    date_to: date | None = Query(None, alias="dateTo"),
    store: VinStore = Depends(get_store),
):
    """
    Endpoint to filter VIN records by code substring and recorded date range.
    """
    records = store.search(query=q, date_from=date_from, date_to=date_to)
    logger.info(f"Search matched {len(records)} VIN records")
    return model.VinListResponse(vins=[model.VinOut.from_record(record) for record in records])


@app.get("/api/vins/stats", response_model=model.VinStatsResponse)
async def vin_stats(store: VinStore = Depends(get_store)):
    """
    Endpoint to count VIN records recorded today, this week and this month.
    """
    return model.VinStatsResponse(stats=model.VinStats(**store.stats()))


@app.post("/api/vins/import", response_model=model.VinImportResponse)
def import_vins(file: UploadFile = File(...), store: VinStore = Depends(get_store)):
    """
    Endpoint to bulk import VIN records from an Excel file.

    Rows failing validation are reported, not fatal. Only an unreadable
    file rejects the whole import.
    """
    logger.info(f"Received import request for file '{file.filename}'")
    content = file.file.read()
    if not content:
        raise SpreadsheetError("No file uploaded")

    rows = spreadsheet.read_rows(content)
    summary = spreadsheet.import_rows(store, rows)
    return model.VinImportResponse(
        message=f"Import finished: {summary.imported} VINs imported",
        imported=summary.imported,
        duplicates=summary.duplicates,
        errors=summary.error_count,
        error_details=summary.errors,
    )


@app.get("/api/vins/export")
def export_vins(
    export_format: str = Query("xlsx", alias="format", pattern="^(xlsx|parquet)$"),
    store: VinStore = Depends(get_store),
) -> Response:
    """
    Endpoint to download every VIN record as an Excel workbook or a parquet file.
    """
    logger.info(f"Exporting VIN records as {export_format}")
    records = store.list_all()

    if export_format == "parquet":
        content = spreadsheet.export_parquet(records)
        # per https://www.rfc-editor.org/rfc/rfc2046.txt
        media_type = "application/octet-stream"
    else:
        content = spreadsheet.export_rows(records)
        media_type = XLSX_MEDIA_TYPE

    filename = f"vins_export_{utcnow().date().isoformat()}.{export_format}"
    response = Response(content=content, media_type=media_type)
    response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    logger.info(f"Export of {len(records)} records completed successfully")
    return response


@app.delete("/api/vins/{vin_id}", response_model=model.VinDeleteResponse)
async def delete_vin(vin_id: int, store: VinStore = Depends(get_store)):
    """
    Endpoint to delete a VIN record by id.

    Returns:
        model.VinDeleteResponse: The record as it was before deletion.
    """
    logger.info(f"Received deletion request for VIN id {vin_id}")
    record = store.delete(vin_id)
    logger.info(f"VIN {record.code} deleted")
    return model.VinDeleteResponse(message="VIN deleted successfully", deleted_vin=model.VinOut.from_record(record))


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status", response_model=model.StatusResponse)
async def status(request: Request, store: VinStore = Depends(get_store)):
    """
    Readiness endpoint reporting database reachability and uptime.
    """
    started_at = getattr(request.app.state, "started_at", time.monotonic())
    return model.StatusResponse(
        status="ok",
        database="connected",
        total_vins=store.count(),
        uptime_seconds=int(time.monotonic() - started_at),
    )


@app.get("/ping", response_class=PlainTextResponse)
async def ping():
    return "pong"


@app.get("/", response_class=HTMLResponse)
async def root():
    """
    Default endpoint that redirects the user to the Swagger UI.

    Returns:
        HTMLResponse: An HTMLResponse object that represents the Swagger UI page.
    """
    return get_swagger_ui_html(openapi_url="/openapi.json", title="API Docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)

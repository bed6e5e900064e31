import json
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.contracts import BUSINESS_HEADER, TENANT_HEADER, TRANSACTION_HEADER, ErrorCode, error_body
from core.dispatch import get_dispatcher
from core.errors import ConsentServiceError
from core.failure_modes import failure_policy, record_unexpected
from core.logging_utils import configure_logging, log_request, log_structured, monotonic_ms, request_id_from_request
from core.scheduler import start_scheduler, stop_scheduler
from core.tenancy import get_resolver
from routers.consent_handles import router as consent_handles_router
from routers.consents import router as consents_router
from routers.dashboard import router as dashboard_router
from routers.health import router as health_router
from routers.templates import router as templates_router

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Consent Lifecycle API",
    description=(
        "Multi-tenant consent templates, consent handles and versioned consents. "
        f"Every tenant route requires the `{TENANT_HEADER}` header."
    ),
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=[
        {"name": "templates", "description": "Versioned consent templates."},
        {"name": "consent-handles", "description": "Short-lived handles that authorise one consent write."},
        {"name": "consents", "description": "Versioned consent records, updates and revocation."},
        {"name": "health", "description": "Operational liveness and diagnostics."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-Id", TENANT_HEADER, BUSINESS_HEADER, TRANSACTION_HEADER],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request_id_from_request(request)
    request.state.request_id = request_id
    started = monotonic_ms()
    response = await call_next(request)
    if response.status_code < 400 and response.headers.get("content-type", "").startswith("application/json"):
        body = b""
        async for chunk in response.body_iterator:
            body += chunk
        try:
            decoded = json.loads(body.decode("utf-8")) if body else None
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, dict) and ("data" in decoded or "error" in decoded):
            wrapped = decoded
        else:
            wrapped = {"data": decoded}
        response = JSONResponse(content=wrapped, status_code=response.status_code)
    response.headers["X-Request-Id"] = request_id
    elapsed = monotonic_ms() - started
    log_request(request_id, request.method, request.url.path, response.status_code, elapsed)
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@app.exception_handler(ConsentServiceError)
async def consent_service_error_handler(request: Request, exc: ConsentServiceError):
    log_structured(
        "request.rejected",
        request_id=_request_id(request),
        path=request.url.path,
        status_code=exc.http_status,
        error_class=exc.__class__.__name__,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=error_body(exc.code, exc.message, _request_id(request)),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message = str(exc.detail) if isinstance(exc.detail, str) else "Request could not be processed"
    code = ErrorCode.NOT_FOUND if exc.status_code == 404 else ErrorCode.INTERNAL_ERROR
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, message, _request_id(request)),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_body(
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed",
            _request_id(request),
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    policy = failure_policy(exc)
    failure_class = record_unexpected(exc, request_id=_request_id(request))
    log_structured(
        "request.failed",
        level=logging.ERROR,
        request_id=_request_id(request),
        path=request.url.path,
        error_class=exc.__class__.__name__,
        failure_class=failure_class.value,
    )
    code = ErrorCode.SERVICE_UNAVAILABLE if policy.http_status == 503 else ErrorCode.INTERNAL_ERROR
    return JSONResponse(
        status_code=policy.http_status,
        content=error_body(code, "Internal server error", _request_id(request)),
    )


app.include_router(health_router)


@app.get("/")
def root():
    return {"status": "Consent Lifecycle API running"}


app.include_router(templates_router)
app.include_router(consent_handles_router)
app.include_router(consents_router)
app.include_router(dashboard_router)


@app.on_event("startup")
async def on_startup() -> None:
    logger.info(
        "startup env=%s version=%s partition_prefix=%s",
        settings.env,
        settings.app_version,
        settings.tenant_database_prefix,
    )
    try:
        tenant_ids = get_resolver().discover_tenant_ids()
    except Exception as exc:
        raise RuntimeError("partition catalog check failed") from exc
    log_structured("startup.partitions_discovered", partitions=len(tenant_ids))
    start_scheduler(app)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await stop_scheduler(app)
    get_dispatcher().shutdown(wait=True)
    get_resolver().dispose()

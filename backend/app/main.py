import logging

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from .config import API_PREFIX, allow_credentials, get_allowed_origins
from .exceptions import DomainException, ProblemDetail
from .routers import auth, cron, matches, notifications, players
from .services.validation import ValidationError
from .utils.sentry import init_sentry

logger = logging.getLogger(__name__)

SENTRY_ENABLED = init_sentry("api")

# Refuse to start with a missing/wildcard origin list or a weak JWT secret.
ALLOWED_ORIGINS = get_allowed_origins()
ALLOW_CREDENTIALS = allow_credentials()
auth.get_jwt_secret()

app = FastAPI(
    title="Club Ladder API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)
app.state.limiter = auth.limiter
app.add_exception_handler(RateLimitExceeded, auth.rate_limit_handler)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

logger.info(
    "Starting Club Ladder API (prefix=%r, origins=%s, sentry=%s)",
    API_PREFIX,
    ALLOWED_ORIGINS,
    SENTRY_ENABLED,
)


def _problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(),
        media_type="application/problem+json",
    )


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    return _problem_response(
        ProblemDetail(
            type=exc.type,
            title=exc.title,
            detail=exc.detail,
            status=exc.status_code,
            code=exc.code,
            instance=request.url.path,
        )
    )


@app.exception_handler(ValidationError)
async def match_validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _problem_response(
        ProblemDetail(
            title="Invalid match",
            detail=exc.detail,
            status=422,
            code="match_validation_error",
            instance=request.url.path,
        )
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem_response(
        ProblemDetail(
            title=message,
            detail=message,
            status=exc.status_code,
            code=getattr(exc, "code", f"http_{exc.status_code}"),
            instance=request.url.path,
        )
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", exc_info=(type(exc), exc, exc.__traceback__))
    return _problem_response(
        ProblemDetail(
            title="Internal Server Error",
            status=500,
            detail=str(exc),
            code="internal_server_error",
            instance=request.url.path,
        )
    )


@app.get("/healthz", tags=["health"])
def healthz():
    return {"status": "ok"}


api = APIRouter(prefix=API_PREFIX)


@api.get("", tags=["meta"])
def api_root():
    return {"message": "Club Ladder API. See /docs.", "versions": ["v0"]}


v0 = APIRouter(prefix="/v0")
for module in (players, matches, notifications, cron):
    v0.include_router(module.router)

api.include_router(v0)
app.include_router(api)

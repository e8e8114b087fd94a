import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from medverify.core.config import settings
from medverify.core.errors import Forbidden, MedVerifyError, NotFound, PersistenceError, RateLimited
from medverify.core.logger import logger
from medverify.core.redis import redis_client
from medverify.db.session import detect_schema_capabilities, init_db
from medverify.jobs.otp_sweep import run_otp_sweeper
from medverify.middleware.log_middleware import LogMiddleware

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await detect_schema_capabilities()
    sweeper = asyncio.create_task(run_otp_sweeper())
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await redis_client.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

from fastapi.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

def error_response(status_code: int, message: str, kind: str, fields=None, headers=None) -> JSONResponse:
    content = {"success": False, "error": message, "errorKind": kind}
    if fields:
        content["fields"] = fields
    return JSONResponse(status_code=status_code, content=content, headers=headers)

@app.exception_handler(MedVerifyError)
async def medverify_error_handler(request: Request, exc: MedVerifyError):
    # Never reveal that a resource exists for someone else
    if isinstance(exc, Forbidden):
        return error_response(NotFound.status_code, exc.message, NotFound.kind)
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return error_response(exc.status_code, exc.message, exc.kind, getattr(exc, "fields", None), headers)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = {401: "Unauthorized", 403: "Forbidden", 404: "NotFound"}.get(exc.status_code, "HttpError")
    return error_response(exc.status_code, str(exc.detail), kind, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error["loc"] if part != "body") for error in exc.errors()]
    return error_response(400, "Invalid request", "ValidationError", fields)

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return error_response(PersistenceError.status_code, PersistenceError.default_message, PersistenceError.kind)

@app.get("/")
async def root():
    return {"message": "Welcome to MedVerify API"}

from medverify.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)

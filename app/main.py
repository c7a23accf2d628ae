import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.v1.router import router as v1_router
from app.core.errors import DomainError, PersistenceError
from app.core.telemetry import setup_telemetry
from app.providers.registry import close_providers
from app.schemas.common import ErrorResponse


log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_providers()


app = FastAPI(title="Dispatch API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)


def _error(status_code: int, code: str, message: str, details: list[dict] | None = None) -> JSONResponse:
    body = ErrorResponse(code=code, message=message, details=details or [])
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return _error(exc.http_status, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg")} for err in exc.errors()]
    return _error(422, "validation_error", "Invalid request body", details)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log.exception("persistence failure on %s %s", request.method, request.url.path)
    return _error(503, PersistenceError.code, "Storage failure, retry the request")

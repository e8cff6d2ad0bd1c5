import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pki_manager.config import settings
from pki_manager.database import Base, engine
from pki_manager.errors import PKIError, ValidationError
from pki_manager.logging_setup import configure_logging
from pki_manager import models  # noqa: F401  registers tables on Base.metadata
from pki_manager.schemas.common import error_response

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PKI Manager",
    description="Certificate authority lifecycle, issuance and CRL publication backed by key custody",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def create_tables():
    Base.metadata.create_all(bind=engine)


@app.exception_handler(PKIError)
async def pki_exception_handler(request: Request, exc: PKIError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    detail = "; ".join(exc.errors) if isinstance(exc, ValidationError) else exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.message, exc.code, detail).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.detail, f"HTTP_{exc.status_code}").model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_response("Validation error", "VALIDATION_ERROR", str(exc)).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_response(
            "Internal server error",
            "INTERNAL_ERROR",
            str(exc) if settings.DEBUG else "An unexpected error occurred",
        ).model_dump(),
    )


# Import and register API routers
from pki_manager.api import audit, auth, authorities, certificates, crl, public, stats  # noqa: E402

app.include_router(auth.router)
app.include_router(authorities.router)
app.include_router(certificates.router)
app.include_router(crl.router)
app.include_router(audit.router)
app.include_router(stats.router)
app.include_router(public.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)

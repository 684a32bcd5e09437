import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import MatterError, StorageError
from .logging_utils import configure_logging
from .matters import router as matters_router

logger = logging.getLogger(__name__)

_REQUEST_LOCATIONS = {"query", "path", "body", "header", "cookie"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger.info("MatterDesk API starting (env=%s)", settings.ENV)
    yield
    logger.info("MatterDesk API shutting down")


app = FastAPI(title="MatterDesk API", version="0.1.0", lifespan=lifespan)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)


def _validation_details(errors) -> list[dict[str, str]]:
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in _REQUEST_LOCATIONS]
        details.append(
            {
                "field": ".".join(loc),
                "message": str(err.get("msg", "")),
                "code": str(err.get("type", "invalid")),
            }
        )
    return details


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation failed",
            "details": _validation_details(exc.errors()),
        },
    )


@app.exception_handler(MatterError)
async def matter_exception_handler(request: Request, exc: MatterError):
    if isinstance(exc, StorageError) or exc.status_code >= 500:
        # Already logged with context where it was raised
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.public_message}
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(matters_router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}

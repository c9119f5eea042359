"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.api.chat import require_credentials, security
from app.core.errors import AuthError, ContextEngineError, ValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Context Engine",
    description="Multi-tier context injection and streamed chat for company AI assistants",
    version="0.1.0",
)


@app.exception_handler(ContextEngineError)
async def context_engine_error_handler(request: Request, exc: ContextEngineError) -> JSONResponse:
    """Render pipeline errors as ``{error, details?}``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"{request.url.path} failed with {exc.status_code}: {exc.error}")
    return JSONResponse(content=exc.to_payload(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are a 400 like any other invalid request.

    The body is parsed before the endpoint runs, so the credential is checked
    here as well; a request without one is a 401 whatever its body.
    """
    try:
        require_credentials(await security(request))
    except AuthError as auth_error:
        return await context_engine_error_handler(request, auth_error)

    error = ValidationError("Malformed request body", details=jsonable_encoder(exc.errors()))
    return await context_engine_error_handler(request, error)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])

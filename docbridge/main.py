import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docbridge import __version__, settings
from docbridge.errors import BridgeError, MethodNotAllowed, NotFound, classify
from docbridge.middleware.security_headers import SecurityHeadersMiddleware
from docbridge.middleware.timing import ResponseTimeMiddleware
from docbridge.routes import data
from docbridge.serialization import envelope
from docbridge.utils.logger import configure_logging

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="docbridge", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_methods=data.METHODS,
    allow_headers=["Content-Type"],
)
app.add_middleware(SecurityHeadersMiddleware)
# outermost, so responseTime covers the whole stack
app.add_middleware(ResponseTimeMiddleware)

app.include_router(data.router)


@app.on_event("startup")
async def _startup():
    log.info("docbridge %s serving database %r (env=%s)", __version__, settings.MONGO_DB, settings.APP_ENV)


def _error_response(request: Request, err: BridgeError) -> JSONResponse:
    body = envelope(request, error=err.to_dict(include_details=settings.is_development()))
    return JSONResponse(body, status_code=err.status_code)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError):
    return _error_response(request, exc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        err = NotFound("Route not found")
    elif exc.status_code == 405:
        err = MethodNotAllowed()
    else:
        err = BridgeError(str(exc.detail))
        err.status_code = exc.status_code
        err.code = "HTTPError"
    return _error_response(request, err)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(request, classify(exc))


@app.get("/health")
def health():
    return {"status": "ok"}

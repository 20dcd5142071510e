import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from workers_api.api.v1.router import router as api_router
from workers_api.core.config import settings
from workers_api.core.errors import WorkersError
from workers_api.core.logging_config import log_request, structured_log
from workers_api.core.prod_check import validate_production_config
from workers_api.core.request_metrics import observe
from workers_api.db.bootstrap import bootstrap_database


@asynccontextmanager
async def lifespan(_app: FastAPI):
    validate_production_config()
    if settings.db_bootstrap_on_start:
        bootstrap_database()
    yield


app = FastAPI(title=settings.app_name, version='1.0.0', lifespan=lifespan)

if settings.cors_origins and settings.cors_origins.strip() != '*':
    origins = [o.strip() for o in settings.cors_origins.split(',') if o.strip()]
else:
    origins = [
        'http://localhost:8080', 'http://localhost:5173',
        'http://127.0.0.1:8080', 'http://127.0.0.1:5173',
    ]


def _cors_error_headers(request: Request) -> dict[str, str]:
    origin = request.headers.get('origin', '').strip()
    if not origin or origin not in origins:
        return {}
    return {
        'access-control-allow-origin': origin,
        'access-control-allow-credentials': 'true',
        'vary': 'Origin',
    }


def _trace_id(request: Request) -> str:
    return getattr(request.state, 'trace_id', None) or request.headers.get('x-trace-id') or str(uuid.uuid4())


def _error_response(status_code: int, error_code: str, message: str, details, trace_id: str) -> JSONResponse:
    body = {
        'success': False,
        'error_code': error_code,
        'message': message,
        'details': details,
        'trace_id': trace_id,
    }
    return JSONResponse(status_code=status_code, content=body)


app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware('http')
async def trace_and_logging(request: Request, call_next):
    trace_id = request.headers.get('x-trace-id') or str(uuid.uuid4())
    request.state.trace_id = trace_id
    start = time.time()
    try:
        response = await call_next(request)
        latency = round((time.time() - start) * 1000, 2)
        observe(f'{request.method} {request.url.path}', latency, response.status_code)
        log_request(request.url.path, request.method, trace_id, latency, response.status_code)
        response.headers['x-trace-id'] = trace_id
        response.headers['x-latency-ms'] = str(latency)
        return response
    except Exception as exc:
        latency = round((time.time() - start) * 1000, 2)
        observe(f'{request.method} {request.url.path}', latency, 500)
        structured_log(
            'error', 'request_failed',
            trace_id=trace_id, duration_ms=latency,
            endpoint=f'{request.method} {request.url.path}',
            error=str(exc),
        )
        response = _error_response(500, 'INTERNAL_ERROR', 'Error interno', str(exc), trace_id)
        response.headers.update({'x-trace-id': trace_id, 'x-latency-ms': str(latency)})
        response.headers.update(_cors_error_headers(request))
        return response


@app.exception_handler(WorkersError)
async def workers_error_handler(request: Request, exc: WorkersError):
    trace_id = _trace_id(request)
    structured_log(
        'warning', 'request_rejected',
        trace_id=trace_id,
        endpoint=f'{request.method} {request.url.path}',
        error_code=exc.error_code,
        error=exc.message,
    )
    return _error_response(exc.status_code, exc.error_code, exc.message, exc.details, trace_id)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    trace_id = _trace_id(request)
    if isinstance(exc.detail, dict):
        return _error_response(
            exc.status_code,
            str(exc.detail.get('error_code') or 'HTTP_ERROR'),
            str(exc.detail.get('message') or 'HTTP Error'),
            exc.detail.get('details'),
            trace_id,
        )
    return _error_response(exc.status_code, 'HTTP_ERROR', str(exc.detail), None, trace_id)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(422, 'INVALID_PAYLOAD', 'Payload invalido', {'errors': jsonable_encoder(exc.errors())}, _trace_id(request))


app.include_router(api_router)

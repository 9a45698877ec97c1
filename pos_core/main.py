import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pos_core.config import settings
from pos_core.errors import ErrorKind, PosError
from pos_core.logging_setup import setup_logging
from pos_core.routers import orders, shifts, tables

setup_logging(settings.log_level, json_output=settings.log_json)
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INVARIANT_VIOLATION: 422,
    ErrorKind.APPROVAL_REQUIRED: 428,
    ErrorKind.FORBIDDEN: 403,
}

app = FastAPI(title='POS Core')

app.include_router(orders.router)
app.include_router(tables.router)
app.include_router(shifts.router)


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    logger.info('%s %s rejected: %s (%s)', request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=status_code, content={'error': exc.to_dict()})


@app.get('/healthz')
def healthz() -> dict:
    return {'status': 'ok'}

import logging
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from .config import get_settings
from .domain.errors import InfrastructureError
from .routers import bookings, slots
from .utils.request_id import REQUEST_ID_HEADER, RequestIdFilter, generate_request_id, set_request_id

logger = logging.getLogger("slotbook")


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s")
    )
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    logger.setLevel(level.upper())
    logger.propagate = False


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def infrastructure_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("infrastructure failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "storage unavailable, retry later"},
    )


configure_logging(get_settings().log_level)

app = FastAPI(title="Slotbook API")
app.middleware("http")(request_id_middleware)
app.add_exception_handler(InfrastructureError, infrastructure_error_handler)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(slots.router)
app.include_router(bookings.router)

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from recipe_ingest.app.api.errors import IngestRequestError
from recipe_ingest.app.api.routes import api_router
from recipe_ingest.app.db.session import init_db
from recipe_ingest.app.services.queue_service import get_queue_length

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []) if part is not None)
        msg = err.get("msg", "Invalid value")
        details.append({"field": loc or None, "message": msg})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "INVALID_PAYLOAD",
            "message": "Invalid request payload.",
            "details": details,
            "request_id": str(uuid.uuid4()),
        },
    )


async def ingest_request_exception_handler(request: Request, exc: IngestRequestError):
    detail = {"field": exc.field, "message": exc.message}
    if exc.reason:
        detail["reason"] = exc.reason
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": [detail],
            "request_id": str(uuid.uuid4()),
        },
    )


def create_app(initialize_db: bool = True) -> FastAPI:
    app = FastAPI(title="Recipe Ingest", version="0.1.0")
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IngestRequestError, ingest_request_exception_handler)
    app.include_router(api_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "queue_length": get_queue_length()}

    if initialize_db:

        @app.on_event("startup")
        async def startup_event() -> None:
            init_db()
            logger.info("Database initialized")

    return app


app = create_app()

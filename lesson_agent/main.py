from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lesson_agent.api.v1.api_router import v1_router
from lesson_agent.api.v1.errors import ApiError, api_error_exception_handler
from lesson_agent.core.dependencies import get_container
from lesson_agent.core.settings import settings
from lesson_agent.infrastructure.container import LessonContainer
from lesson_agent.infrastructure.observability.logger_config import configure_structlog

# Configure Structlog (JSON Logging)
configure_structlog()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None) or LessonContainer(settings)
    app.state.container = container
    await container.startup()
    try:
        yield
    finally:
        await container.shutdown()


app = FastAPI(
    title="Lesson Plan Agent",
    description="Multi-stage lesson plan generation with hybrid knowledge-graph retrieval.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(
        "request_contract_breach",
        endpoint=str(request.url),
        validation_errors=jsonable_encoder(exc.errors()),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "INVALID_REQUEST",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


app.add_exception_handler(ApiError, api_error_exception_handler)

app.include_router(v1_router)


@app.get("/health")
async def health(container: LessonContainer = Depends(get_container)):
    return container.health()

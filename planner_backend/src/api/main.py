import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import PlannerError
from .settings import configure_logging, get_settings
from .routers import projects as projects_router
from .routers import snapshots as snapshots_router
from .routers import tasks as tasks_router

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "projects",
        "description": "Projects with their nested task trees, rebuilt from flat task rows.",
    },
    {
        "name": "tasks",
        "description": "CRUD operations for individual task rows, including re-parenting.",
    },
    {
        "name": "snapshots",
        "description": "Immutable, timestamped copies of the whole application state.",
    },
]

app = FastAPI(
    title="Planner Backend",
    description="Hierarchical project/task manager with snapshot-based history and rollback.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

_settings = get_settings()
configure_logging(_settings.log_level)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(PlannerError)
async def planner_exception_handler(request: Request, exc: PlannerError) -> JSONResponse:
    """
    Map domain errors onto HTTP responses.

    Response format:
        {"error": "NotFound" | "ValidationError" | "DuplicateKey" | "StorageUnavailable",
         "detail": "<message>"}
    """
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "detail": str(exc)},
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers
app.include_router(projects_router.router)
app.include_router(tasks_router.router)
app.include_router(snapshots_router.router)

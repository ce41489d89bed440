from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classsched.api.routes import health, leaves, substitutions, timetables
from classsched.core.config import get_settings
from classsched.core.exceptions import AppError
from classsched.core.logging import setup_logging
from classsched.services.notifications import get_notifier

settings = get_settings()
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    notifier = get_notifier()
    shutdown = getattr(notifier, "shutdown", None)
    if shutdown is not None:
        shutdown(wait=False)


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(timetables.router, prefix=settings.api_prefix, tags=["timetables"])
app.include_router(leaves.router, prefix=settings.api_prefix, tags=["leaves"])
app.include_router(substitutions.router, prefix=settings.api_prefix, tags=["substitutions"])

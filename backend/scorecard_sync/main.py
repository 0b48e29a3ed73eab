from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scorecard_sync.api import schedules
from scorecard_sync.core import database
from scorecard_sync.core.config import settings
from scorecard_sync.core.errors import AlreadyRunning, NotFound, NotRunning, ValidationError
from scorecard_sync.core.logging import configure_logging
from scorecard_sync.services.jobs.scorecard_sync import run_scorecard_sync
from scorecard_sync.services.scheduler import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    database.init_db()

    # Recovery runs before the first request is served
    services = build_services(database.engine, run_scorecard_sync)
    app.state.scheduler = services
    services.start()

    yield

    services.shutdown()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": str(exc)})
    return handler


app.add_exception_handler(ValidationError, _error(400))
app.add_exception_handler(NotFound, _error(404))
app.add_exception_handler(AlreadyRunning, _error(409))
app.add_exception_handler(NotRunning, _error(409))

app.include_router(schedules.router, prefix="/api/schedules", tags=["schedules"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from poolplay.database import init_db
from poolplay.errors import TournamentEngineError
from poolplay.routes import formats, matches, playoffs, stages, standings

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pool Play Stage Engine API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TournamentEngineError)
def tournament_engine_error_handler(request: Request, exc: TournamentEngineError):
    """Domain errors become JSON bodies with their own status code"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# Include routers
app.include_router(formats.router, prefix="/api", tags=["formats"])
app.include_router(stages.router, prefix="/api", tags=["stages"])
app.include_router(matches.router, prefix="/api", tags=["matches"])
app.include_router(standings.router, prefix="/api", tags=["standings"])
app.include_router(playoffs.router, prefix="/api", tags=["playoffs"])


@app.on_event("startup")
def on_startup():
    init_db()  # Imports models and creates tables
    logger.info("Registered %d routes", len([r for r in app.routes if getattr(r, "path", None)]))


@app.get("/api/health")
def health_check():
    return {"app_name": "Pool Play Stage Engine API", "status": "healthy"}

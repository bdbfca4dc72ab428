from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from cinetrack.api import admin, auth, blacklist, invitations, movies, recommendations, search, tags, user, watchlist
from cinetrack.core.config import settings
from cinetrack.core.database import init_db
from cinetrack.utils.logger import setup_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="CineTrack API", version="1.0.0")

# Add GZip compression middleware for better transfer performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url] if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(watchlist.router, prefix="/api/watchlist", tags=["Watchlist"])
app.include_router(movies.router, prefix="/api", tags=["Movies"])
app.include_router(blacklist.router, prefix="/api/blacklist", tags=["Blacklist"])
app.include_router(tags.router, prefix="/api/tags", tags=["Tags"])
app.include_router(user.router, prefix="/api/user", tags=["User"])
app.include_router(search.router, prefix="/api", tags=["Search"])
app.include_router(recommendations.router, prefix="/api/recommendations", tags=["Recommendations"])
app.include_router(invitations.router, prefix="/api/invitations", tags=["Invitations"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed input is a client error, reported as 400 with the first problem
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": f"{field}: {message}" if field else message, "errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors
        ]},
    )


@app.on_event("startup")
async def startup_event():
    setup_logging()
    if not settings.secret_key:
        # Tokens cannot be signed without it; refuse to serve
        raise RuntimeError("SECRET_KEY is not configured")
    await init_db()
    logger.info("CineTrack API started")


@app.get("/")
def root():
    return {"message": "CineTrack API is running"}


@app.get("/health")
def health():
    return {"status": "ok"}

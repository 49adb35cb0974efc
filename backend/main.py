from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine, Base, run_startup_migrations
import db.models  # noqa: F401  (register tables on Base.metadata)
from auth.routes import router as auth_router
from api.profile import router as profile_router
from api.challenges import router as challenges_router
from api.progress import router as progress_router
from api.calendar import router as calendar_router
from api.streaks import router as streaks_router
from api.water import router as water_router
from api.notes import router as notes_router
from api.notifications import router as notifications_router
from api.cron import router as cron_router
from services.calendar_service import InvalidConfigurationError
from utils.datetime_utils import InvalidTimezoneError

settings.validate_security_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)
run_startup_migrations()

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.SECURITY_HEADERS_ENABLED:
        return response
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(self), microphone=(), geolocation=()"
    response.headers["Content-Security-Policy"] = settings.SECURITY_CSP
    return response


@app.exception_handler(InvalidTimezoneError)
async def invalid_timezone_handler(request: Request, exc: InvalidTimezoneError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InvalidConfigurationError)
async def invalid_configuration_handler(request: Request, exc: InvalidConfigurationError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# Routers
app.include_router(auth_router, prefix="/api")
app.include_router(profile_router, prefix="/api")
app.include_router(challenges_router, prefix="/api")
app.include_router(progress_router, prefix="/api")
app.include_router(calendar_router, prefix="/api")
app.include_router(streaks_router, prefix="/api")
app.include_router(water_router, prefix="/api")
app.include_router(notes_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(cron_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from admissions.core.config import settings
from admissions.core.exceptions import AppError
from admissions.database.database import Base, SessionLocal, check_db_connection, engine
from admissions.routers import overview, program_applications, public
from admissions.services.template_service import TemplateService

# every model has to be imported before create_all
import admissions.models  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("admissions.main")

app = FastAPI(
    title="Admissions Pipeline API",
    description="Program applications, interviews, applicant messaging and student onboarding",
    version="1.0.0"
)


@app.on_event("startup")
async def bootstrap():
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)

    # default message templates, inserted once under an advisory lock
    try:
        with SessionLocal() as db:
            TemplateService(db).ensure_default_templates()
    except Exception:
        logger.exception("Failed to ensure default message templates on startup")

    routes = [
        {"path": getattr(route, "path", str(route)), "methods": sorted(getattr(route, "methods", None) or [])}
        for route in app.router.routes
    ]
    logger.info(f"Registered routes: {routes}")


logger.info(f"Configured CORS origins: {settings.cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Unhandled errors still get the JSON error envelope (and CORS headers for allowed origins)
@app.middleware("http")
async def ensure_error_envelope(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"Unhandled exception in {request.method} {request.url.path}")
        response = JSONResponse(
            status_code=500,
            content={"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
        )
        origin = request.headers.get("origin")
        if origin and (origin in settings.cors_origins or "*" in settings.cors_origins):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {"code": "VALIDATION_ERROR", "message": "Request validation failed.", "details": details},
        },
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"{request.method} {request.url.path} hit a constraint: {exc.orig}")
    return JSONResponse(
        status_code=409,
        content={"success": False, "error": {"code": "CONFLICT", "message": "The request conflicts with existing data."}},
    )


# Routers
app.include_router(program_applications.router, tags=["Program applications"])
app.include_router(public.router, tags=["Public"])
app.include_router(overview.router, tags=["Overview"])


@app.get("/")
async def root():
    return {"message": "Admissions pipeline API is running"}


@app.get("/health")
async def health_check():
    database = check_db_connection()
    healthy = database["status"] == "connected"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "unhealthy", "database": database},
    )

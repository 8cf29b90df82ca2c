"""FastAPI entrypoint for the Exam Portal."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from exam_portal.auth_utils import hash_password
from exam_portal.config import settings
from exam_portal.database import create_db_and_tables, engine
from exam_portal.errors import ErrorKind, ExamFlowError, PermissionDenied
from exam_portal.models import ROLE_ADMIN, User
from exam_portal.routers import auth as auth_router_module
from exam_portal.routers import exams as exams_router_module
from exam_portal.routers import permissions as permissions_router_module
from exam_portal.routers import questions as questions_router_module
from exam_portal.services.permissions import RolePermissionCache, seed_permission_catalog

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.EXAM_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ATTEMPT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EXAM_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_ASSIGNED: status.HTTP_403_FORBIDDEN,
    ErrorKind.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_YET_OPEN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CLOSED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EMPTY_SUBMISSION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INCOMPLETE_SUBMISSION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_BANK: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ATTEMPT_LIMIT_REACHED: status.HTTP_409_CONFLICT,
    ErrorKind.ATTEMPT_ALREADY_SUBMITTED: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
}

app = FastAPI(title="Exam Portal")

# Role policy cache shared by every request in this process
app.state.permission_cache = RolePermissionCache(settings.PERMISSION_CACHE_TTL_SECONDS)


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": exc.kind.value, "message": exc.message},
    )


@app.exception_handler(ExamFlowError)
async def exam_flow_error_handler(request: Request, exc: ExamFlowError):
    """Map domain failures to HTTP status codes with a structured body."""
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.kind.value)
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        content=exc.to_dict(),
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Store error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "StoreUnavailable",
            "message": "The data store is temporarily unavailable",
            "retryable": True,
        },
    )


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])
app.include_router(questions_router_module.router, prefix="/questions", tags=["questions"])
app.include_router(
    permissions_router_module.router, prefix="/permissions", tags=["permissions"]
)


@app.on_event("startup")
def on_startup():
    """Initialize database schema, the permission catalog and a default admin."""
    create_db_and_tables()
    with Session(engine) as session:
        seed_permission_catalog(session, app.state.permission_cache)

        existing_admin = session.exec(select(User).where(User.role == ROLE_ADMIN)).first()
        if not existing_admin:
            admin_user = User(
                username=settings.DEFAULT_ADMIN_USERNAME,
                full_name="System Admin",
                password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
                role=ROLE_ADMIN,
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default admin user: %s", settings.DEFAULT_ADMIN_USERNAME)

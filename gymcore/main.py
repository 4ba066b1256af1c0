from __future__ import annotations

from fastapi import FastAPI
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import Base, engine
from .observability import RequestTimingLoggingMiddleware, add_exception_handlers, configure_logging
from .routers import health
from .routers import memberships as memberships_router
from .routers import approvals as approvals_router
from .routers import trainers as trainers_router
from .routers import invoices as invoices_router
from .routers import expiries as expiries_router

# Schema must exist for TestClient runs that skip the lifespan
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()
    application = FastAPI(title="Gym Membership Lifecycle API", version="0.1.0", lifespan=lifespan)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestTimingLoggingMiddleware)

    add_exception_handlers(application)

    application.include_router(health.router)
    application.include_router(memberships_router.router)
    application.include_router(approvals_router.router)
    application.include_router(trainers_router.router)
    application.include_router(invoices_router.router)
    application.include_router(expiries_router.router)

    return application


app = create_app()

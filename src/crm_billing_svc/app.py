import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from crm_billing_svc.config import get_settings
from crm_billing_svc.models import organization, subscription  # noqa: F401  registers tables
from crm_billing_svc.models.base import Base, get_engine
from crm_billing_svc.routers import billing_router

# Fails fast when the Stripe secret key is missing
settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=get_engine())
    yield


app = FastAPI(debug=settings.debug, lifespan=lifespan)

app.include_router(billing_router.router, prefix="/billing", tags=["billing"])

import logging

from fastapi import FastAPI
from dotenv import load_dotenv
from app.core.config import settings
from app.core.database import SessionLocal, ensure_schema
from app.scheduler import SchedulerLoop
from app.services.sms_service import SMSService
from app.api import leads, sms, payments, unlocks
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Lead Unlock Backend")

# -------------------------
# CORS
# -------------------------
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    settings.DOMAIN,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -------------------------
# Include Routers
# -------------------------
app.include_router(leads.router)
app.include_router(sms.router)
app.include_router(payments.router)
app.include_router(unlocks.router)

scheduler = SchedulerLoop(SessionLocal, SMSService())

# -------------------------
# FastAPI lifecycle
# -------------------------

@app.on_event("startup")
def startup():
    # Tables come from `alembic upgrade head`; this only verifies them
    ensure_schema()

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("⏸️ Scheduler disabled (SCHEDULER_ENABLED=false)")

@app.on_event("shutdown")
def shutdown():
    scheduler.stop()

# -------------------------
# Routes
# -------------------------

@app.get("/")
def root():
    return {"status": "running", "scheduler": scheduler.running}

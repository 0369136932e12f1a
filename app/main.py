import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from app.contests.admin_router import router as admin_router
from app.contests.config import LOG_LEVEL, MONGO_DB_NAME, MONGO_URL
from app.contests.contest_router import router as contest_router
from app.contests.creator_router import router as creator_router
from app.contests.database import create_contest_indexes
from app.contests.student_router import router as student_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Contest Arena")

# MongoDB Configuration
client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


@app.on_event("startup")
async def startup_event():
    await create_contest_indexes(db)
    logger.info("Contest Arena started (database %s)", MONGO_DB_NAME)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ROUTER REGISTRATION ====================
app.include_router(contest_router, prefix="/contests")
app.include_router(student_router, prefix="/student")
app.include_router(admin_router, prefix="/admin")
app.include_router(creator_router, prefix="/creator")
# ============================================================


@app.get("/health")
async def health():
    return {"status": "ok"}

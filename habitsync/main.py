from fastapi import FastAPI, BackgroundTasks, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from contextlib import contextmanager
from datetime import date
from typing import List, Optional
import logging
import os
from pathlib import Path

from habitsync.database import engine, get_db, Base, SessionLocal
from habitsync import models  # Import all models to register them with Base
from habitsync.schemas import (
    HabitCreate, HabitUpdate, HabitResponse, CompletionRecord, CompleteHabitRequest,
    CompletionResponse, HabitProgressSnapshot, WeatherResponse,
    XpStatistics, XpAwardResponse, RewardedAdRequest, ManualXpRequest,
    SyncOperation, SyncStatusResponse, DrainResponse,
    SettingsUpdate, SettingsResponse
)
from habitsync.auth import verify_api_key, get_user_id
from habitsync.exceptions import (
    HabitSyncException, ValidationException, HabitNotFoundException,
    CompletionNotFoundException, OperationNotFoundException,
    DailyLimitException, LocalStoreException
)
from habitsync.repositories.local_store import SqlLocalStore
from habitsync.repositories.settings_repository import SettingsRepository
from habitsync.services.date_service import SystemClock
from habitsync.services.event_service import ProgressEventBus
from habitsync.services.habit_service import HabitService
from habitsync.services.sync_service import SyncQueue, SyncWorker, UnconfiguredRemoteStore
from habitsync.scheduler import start_scheduler, stop_scheduler
from habitsync.constants import (
    SyncStatus, DEFAULT_LOG_DIRECTORY_PROD, DEFAULT_LOG_DIRECTORY_DEV, CORS_ALLOWED_ORIGINS
)

LOG_DIR = os.getenv("HABITSYNC_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("HABITSYNC_LOG_FILE", "app.log")

# Create log directory if it doesn't exist (for development)
try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()  # Also log to console
    ]
)

logger = logging.getLogger("habitsync")

# Create database tables
Base.metadata.create_all(bind=engine)

# Process-wide collaborators. The clock only supplies instants; logical
# dates are resolved in the timezone stored in settings.
clock = SystemClock()
events = ProgressEventBus()


@contextmanager
def queue_scope():
    """SyncQueue over a fresh session, one per drain"""
    db = SessionLocal()
    try:
        yield SyncQueue(SqlLocalStore(db), clock, SettingsRepository.get(db))
    finally:
        db.close()


@contextmanager
def habit_service_scope():
    """HabitService over a fresh session, for background jobs"""
    db = SessionLocal()
    try:
        yield HabitService(SqlLocalStore(db), clock, SettingsRepository.get(db), events)
    finally:
        db.close()


worker = SyncWorker(UnconfiguredRemoteStore(), queue_scope)


def configure_remote_store(remote_store) -> None:
    """Inject the transport used by the sync worker"""
    worker.remote = remote_store


def get_clock():
    return clock


def get_events():
    return events


def get_worker():
    return worker


def get_habit_service(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    events: ProgressEventBus = Depends(get_events)
) -> HabitService:
    settings = SettingsRepository.get(db)
    return HabitService(SqlLocalStore(db), clock, settings, events)


app = FastAPI(
    title="HabitSync API",
    description="Habit progress engine with an offline-first sync outbox",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping
@app.exception_handler(HabitSyncException)
async def habitsync_exception_handler(request: Request, exc: HabitSyncException):
    if isinstance(exc, ValidationException):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, (HabitNotFoundException, CompletionNotFoundException, OperationNotFoundException)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, DailyLimitException):
        code = status.HTTP_429_TOO_MANY_REQUESTS
    else:
        if isinstance(exc, LocalStoreException):
            logger.error(f"Local store failure on {request.url.path}: {exc}")
        else:
            logger.error(f"Unhandled error on {request.url.path}: {exc}")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# Startup event
@app.on_event("startup")
async def startup_event():
    logger.info(f"HabitSync API started. Logging to: {log_path}")
    recovered = worker.start()
    if recovered:
        logger.info(f"Recovered {recovered} stale sync operation(s)")
    db = SessionLocal()
    try:
        interval = SettingsRepository.get(db).sync_interval_minutes
    finally:
        db.close()
    start_scheduler(worker, interval, habit_service_scope)


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down HabitSync API")
    worker.stop()
    stop_scheduler()


# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "HabitSync API", "status": "active"}


# ===== HABIT ENDPOINTS =====

@app.get("/api/habits", response_model=List[HabitResponse], dependencies=[Depends(verify_api_key)])
async def get_habits(
    active_only: bool = False,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Get the user's habits"""
    return [HabitResponse(**habit.model_dump()) for habit in service.get_habits(user_id, active_only)]


@app.post("/api/habits", response_model=HabitResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
async def create_habit(
    habit: HabitCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Create a new habit"""
    created, backlogged = service.create_habit(user_id, habit)
    background_tasks.add_task(worker.request_drain)
    return HabitResponse(**created.model_dump(), sync_backlogged=backlogged)


@app.get("/api/habits/{habit_id}", response_model=HabitResponse, dependencies=[Depends(verify_api_key)])
async def get_habit(
    habit_id: str,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Get a specific habit"""
    return HabitResponse(**service.get_habit(user_id, habit_id).model_dump())


@app.put("/api/habits/{habit_id}", response_model=HabitResponse, dependencies=[Depends(verify_api_key)])
async def update_habit(
    habit_id: str,
    habit_update: HabitUpdate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Update a habit"""
    habit, backlogged = service.update_habit(user_id, habit_id, habit_update)
    background_tasks.add_task(worker.request_drain)
    return HabitResponse(**habit.model_dump(), sync_backlogged=backlogged)


@app.delete("/api/habits/{habit_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(verify_api_key)])
async def delete_habit(
    habit_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Delete a habit and its completions"""
    service.delete_habit(user_id, habit_id)
    background_tasks.add_task(worker.request_drain)


# ===== COMPLETION ENDPOINTS =====

@app.post("/api/habits/{habit_id}/complete", response_model=CompletionResponse, dependencies=[Depends(verify_api_key)])
async def complete_habit(
    habit_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[CompleteHabitRequest] = None,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Complete a habit for the current logical date"""
    notes = request.notes if request else None
    result = service.complete_habit(user_id, habit_id, notes)
    if not result.duplicate:
        background_tasks.add_task(worker.request_drain)
    return result


@app.get("/api/habits/{habit_id}/completions", response_model=List[CompletionRecord], dependencies=[Depends(verify_api_key)])
async def get_completions(
    habit_id: str,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Completion log of a habit"""
    return service.get_completions(user_id, habit_id)


@app.delete("/api/completions/{completion_id}", response_model=HabitProgressSnapshot, dependencies=[Depends(verify_api_key)])
async def delete_completion(
    completion_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Delete a completion; returns the recomputed progress of its habit"""
    snapshot = service.delete_completion(user_id, completion_id)
    background_tasks.add_task(worker.request_drain)
    return snapshot


# ===== PROGRESS ENDPOINTS =====

@app.get("/api/habits/{habit_id}/progress", response_model=HabitProgressSnapshot, dependencies=[Depends(verify_api_key)])
async def get_progress(
    habit_id: str,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Streak, decay and growth of a habit"""
    return service.get_progress(user_id, habit_id)


@app.get("/api/weather", response_model=WeatherResponse, dependencies=[Depends(verify_api_key)])
async def get_weather(
    target_date: Optional[date] = None,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Weather for a logical date (default: today)"""
    return service.get_weather(user_id, target_date)


# ===== XP ENDPOINTS =====

@app.get("/api/xp", response_model=XpStatistics, dependencies=[Depends(verify_api_key)])
async def get_xp(
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service)
):
    """Total XP, level progress and period totals"""
    return service.get_xp_statistics(user_id)


@app.post("/api/xp/daily-login", response_model=XpAwardResponse, dependencies=[Depends(verify_api_key)])
async def award_daily_login(
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Claim the daily login bonus (once per logical date)"""
    result = service.award_daily_login(user_id)
    if result.events:
        background_tasks.add_task(worker.request_drain)
    return result


@app.post("/api/xp/rewarded-ad", response_model=XpAwardResponse, dependencies=[Depends(verify_api_key)])
async def award_rewarded_ad(
    request: RewardedAdRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Award XP for a watched rewarded ad"""
    result = service.award_rewarded_ad(user_id, request.ad_id)
    background_tasks.add_task(worker.request_drain)
    return result


@app.post("/api/xp/manual", response_model=XpAwardResponse, dependencies=[Depends(verify_api_key)])
async def award_manual_xp(
    request: ManualXpRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: HabitService = Depends(get_habit_service),
    worker: SyncWorker = Depends(get_worker)
):
    """Manual XP award"""
    result = service.award_manual_xp(user_id, request.amount, request.description)
    background_tasks.add_task(worker.request_drain)
    return result


# ===== SYNC ENDPOINTS =====

@app.get("/api/sync/status", response_model=SyncStatusResponse, dependencies=[Depends(verify_api_key)])
async def get_sync_status(db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Outbox counts and backlog flag"""
    return SyncQueue(SqlLocalStore(db), clock, SettingsRepository.get(db)).status()


@app.get("/api/sync/operations", response_model=List[SyncOperation], dependencies=[Depends(verify_api_key)])
async def get_sync_operations(
    status_filter: Optional[SyncStatus] = None,
    db: Session = Depends(get_db),
    clock=Depends(get_clock)
):
    """Outbox contents in drain order"""
    return SyncQueue(SqlLocalStore(db), clock, SettingsRepository.get(db)).list_operations(status_filter)


@app.get("/api/sync/operations/{operation_id}", response_model=SyncOperation, dependencies=[Depends(verify_api_key)])
async def get_sync_operation(operation_id: str, db: Session = Depends(get_db), clock=Depends(get_clock)):
    """Get a specific sync operation"""
    return SyncQueue(SqlLocalStore(db), clock, SettingsRepository.get(db)).get_operation(operation_id)


@app.post("/api/sync/drain", response_model=DrainResponse, dependencies=[Depends(verify_api_key)])
def drain_sync_queue(worker: SyncWorker = Depends(get_worker)):
    """Run a drain now (e.g. when connectivity is regained)"""
    result = worker.request_drain()
    return DrainResponse(
        attempted=result.attempted,
        synced=result.synced,
        failed=result.failed,
        abandoned=result.abandoned,
        coalesced=result.coalesced
    )


# ===== SETTINGS ENDPOINTS =====

@app.get("/api/settings", response_model=SettingsResponse, dependencies=[Depends(verify_api_key)])
async def get_settings_endpoint(db: Session = Depends(get_db)):
    """Get settings"""
    return SettingsRepository.get(db)


@app.put("/api/settings", response_model=SettingsResponse, dependencies=[Depends(verify_api_key)])
async def update_settings_endpoint(settings_update: SettingsUpdate, db: Session = Depends(get_db)):
    """Update settings"""
    return SettingsRepository.update(db, settings_update)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("habitsync.main:app", host="0.0.0.0", port=8000, reload=False)

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import BaseModel

from auth import CredentialChecker, get_credential_checker
from broadcaster import UpdateBroadcaster
from config import DB_FILE, MIN_SEARCH_LENGTH, REFRESH_HOUR, REFRESH_MINUTE
from database import init_db
from importer import EmptyDatasetError, WorkbookReadError, import_dataset, read_workbook
from storage import PharmacyRepository

logger = logging.getLogger(__name__)


async def refresh_current_week(repository: PharmacyRepository, broadcaster: UpdateBroadcaster):
    """Push the current week's pharmacies to every client (week rollover)."""
    try:
        pharmacies = repository.get_current_week()
    except sqlite3.Error as e:
        logger.error(f"Error in scheduled refresh: {e}")
        return

    if not pharmacies:
        logger.warning("No pharmacy on duty today, a new planning should be uploaded")
    await broadcaster.broadcast(pharmacies)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, subscriber registry and scheduler."""
    repository = PharmacyRepository(DB_FILE)
    init_db(repository.db_file)

    app.state.repository = repository
    app.state.broadcaster = UpdateBroadcaster()
    app.state.import_lock = asyncio.Lock()

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        refresh_current_week,
        CronTrigger(hour=REFRESH_HOUR, minute=REFRESH_MINUTE),
        args=[repository, app.state.broadcaster],
        id="refresh_current_week",
        replace_existing=True,
    )
    scheduler.start()

    try:
        on_duty = len(repository.get_current_week())
        logger.info(f"{on_duty} pharmacies on duty today")
    except sqlite3.Error as e:
        logger.error(f"Error checking current week on startup: {e}")

    yield

    scheduler.shutdown(wait=False)
    app.state.broadcaster.clear()


app = FastAPI(
    title="Pharmacies de garde API",
    description="API for the current week's on-duty pharmacies",
    version="1.0.0",
    lifespan=lifespan,
)


class AdminCredentials(BaseModel):
    password: str = ""


def get_repository(request: Request) -> PharmacyRepository:
    return request.app.state.repository


def get_broadcaster(request: Request) -> UpdateBroadcaster:
    return request.app.state.broadcaster


def _check_admin(password: str, checker: CredentialChecker):
    if not checker.verify(password):
        raise HTTPException(status_code=401, detail="Mot de passe incorrect")


@app.websocket("/ws")
async def updates_ws(websocket: WebSocket):
    broadcaster: UpdateBroadcaster = websocket.app.state.broadcaster
    try:
        await broadcaster.connect(websocket)
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)


@app.get("/api/pharmacies/current-week", response_model=List[Dict[str, Any]])
async def get_current_week_pharmacies(repository: PharmacyRepository = Depends(get_repository)):
    """Get the pharmacies on duty today."""
    try:
        return repository.get_current_week()
    except sqlite3.Error as e:
        logger.error(f"Error fetching current week pharmacies: {e}")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.get("/api/pharmacies/search", response_model=List[Dict[str, Any]])
async def search_pharmacies(
    q: Optional[str] = Query(None),
    repository: PharmacyRepository = Depends(get_repository),
):
    """Search pharmacies by name or location."""
    if q is None:
        raise HTTPException(status_code=400, detail="Search query is required")

    query = q.strip()
    if len(query) < MIN_SEARCH_LENGTH:
        return []

    try:
        return repository.search(query)
    except sqlite3.Error as e:
        logger.error(f"Error searching pharmacies: {e}")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/api/admin/login")
async def admin_login(
    credentials: AdminCredentials,
    checker: CredentialChecker = Depends(get_credential_checker),
):
    _check_admin(credentials.password, checker)
    return {"success": True, "message": "Connexion réussie"}


@app.post("/api/admin/upload-xlsx")
async def upload_xlsx(
    request: Request,
    file: Optional[UploadFile] = File(None),
    password: str = Form(""),
    repository: PharmacyRepository = Depends(get_repository),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
    checker: CredentialChecker = Depends(get_credential_checker),
):
    """Replace the dataset with the uploaded planning and notify clients."""
    _check_admin(password, checker)
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await file.read()

    async with request.app.state.import_lock:
        try:
            rows = read_workbook(content)
            processed_count = import_dataset(rows, repository)
            updated_pharmacies = repository.get_current_week()
        except (WorkbookReadError, EmptyDatasetError) as e:
            logger.warning(f"Rejected upload {file.filename!r}: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except sqlite3.Error as e:
            logger.error(f"Error processing XLSX file: {e}")
            raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    await broadcaster.broadcast(updated_pharmacies)

    return {"message": "File processed successfully", "processedCount": processed_count}


@app.post("/api/admin/pharmacies", response_model=List[Dict[str, Any]])
async def get_all_pharmacies(
    credentials: AdminCredentials,
    repository: PharmacyRepository = Depends(get_repository),
    checker: CredentialChecker = Depends(get_credential_checker),
):
    """Get every stored pharmacy, on duty or not."""
    _check_admin(credentials.password, checker)
    try:
        return repository.get_all()
    except sqlite3.Error as e:
        logger.error(f"Error fetching all pharmacies: {e}")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.post("/api/admin/status", response_model=Dict[str, Any])
async def get_upload_status(
    credentials: AdminCredentials,
    repository: PharmacyRepository = Depends(get_repository),
    checker: CredentialChecker = Depends(get_credential_checker),
):
    _check_admin(credentials.password, checker)
    try:
        count = repository.count()
        last_update = repository.last_update_time()
    except sqlite3.Error as e:
        logger.error(f"Error fetching admin status: {e}")
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    return {
        "pharmacyCount": count,
        "lastUpdate": last_update.isoformat() if last_update else None,
        "isValid": count > 0,
    }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)

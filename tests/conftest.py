import os
import tempfile
from datetime import date, timedelta
from io import BytesIO

# Settings are read at import time, point them somewhere harmless first
os.environ["PHARMACY_DB_FILE"] = os.path.join(tempfile.mkdtemp(), "pharmacies.db")
os.environ["ADMIN_PASSWORD"] = "secret"

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from database import init_db
from main import app, get_repository
from storage import PharmacyRepository

HEADERS = [
    "nom",
    "localisation",
    "telephone",
    "whatsapp",
    "latitude",
    "longitude",
    "dateDebut",
    "dateFin",
]


def make_row(**overrides):
    today = date.today()
    row = {
        "nom": "Pharmacie Centrale",
        "localisation": "Avenue Mohammed V",
        "telephone": "0522000000",
        "whatsapp": "0600000000",
        "latitude": "33.5731",
        "longitude": "-7.5898",
        "dateDebut": (today - timedelta(days=1)).isoformat(),
        "dateFin": (today + timedelta(days=5)).isoformat(),
    }
    row.update(overrides)
    return row


def make_workbook(rows, headers=HEADERS):
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append([row.get(h) for h in headers])
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def repository(tmp_path):
    db_file = str(tmp_path / "test.db")
    init_db(db_file)
    return PharmacyRepository(db_file)


@pytest.fixture
def client(repository):
    app.dependency_overrides[get_repository] = lambda: repository
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

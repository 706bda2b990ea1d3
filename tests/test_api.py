from conftest import make_row, make_workbook

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def upload(client, content, password="secret"):
    return client.post(
        "/api/admin/upload-xlsx",
        files={"file": ("planning.xlsx", content, XLSX)},
        data={"password": password},
    )


def test_current_week_empty_before_any_upload(client):
    response = client.get("/api/pharmacies/current-week")

    assert response.status_code == 200
    assert response.json() == []


def test_upload_replaces_dataset(client):
    content = make_workbook(
        [
            make_row(nom="Pharmacie Centrale"),
            make_row(nom="Pharmacie Atlas", localisation="Maârif"),
            make_row(nom="", localisation="Ligne invalide"),
            make_row(nom="Pharmacie Passée", dateDebut="2020-01-01", dateFin="2020-01-07"),
        ]
    )

    response = upload(client, content)

    assert response.status_code == 200
    assert response.json() == {"message": "File processed successfully", "processedCount": 3}

    names = [p["name"] for p in client.get("/api/pharmacies/current-week").json()]
    assert names == ["Pharmacie Atlas", "Pharmacie Centrale"]


def test_upload_notifies_connected_clients(client):
    with client.websocket_connect("/ws") as ws:
        welcome = ws.receive_json()
        assert welcome["type"] == "CONNECTION_ESTABLISHED"

        response = upload(client, make_workbook([make_row(nom="Pharmacie Centrale")]))
        assert response.status_code == 200

        message = ws.receive_json()
        assert message["type"] == "PHARMACY_DATA_UPDATED"
        assert [p["name"] for p in message["data"]] == ["Pharmacie Centrale"]
        assert message["timestamp"]


def test_upload_requires_password(client):
    response = upload(client, make_workbook([make_row()]), password="wrong")

    assert response.status_code == 401
    assert response.json()["detail"] == "Mot de passe incorrect"
    assert client.get("/api/pharmacies/current-week").json() == []


def test_upload_without_file(client):
    response = client.post("/api/admin/upload-xlsx", data={"password": "secret"})

    assert response.status_code == 400


def test_upload_with_no_valid_rows_keeps_previous_dataset(client):
    upload(client, make_workbook([make_row(nom="Pharmacie Centrale")]))

    response = upload(client, make_workbook([make_row(nom=""), make_row(telephone=None)]))

    assert response.status_code == 400
    names = [p["name"] for p in client.get("/api/pharmacies/current-week").json()]
    assert names == ["Pharmacie Centrale"]


def test_upload_rejects_non_workbook(client):
    response = upload(client, b"not a spreadsheet")

    assert response.status_code == 400


def test_search(client):
    upload(
        client,
        make_workbook(
            [
                make_row(nom="Pharmacie Centrale", localisation="Centre-ville"),
                make_row(nom="Officine du Port", localisation="Port"),
            ]
        ),
    )

    response = client.get("/api/pharmacies/search", params={"q": "phar"})

    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["Pharmacie Centrale"]


def test_search_short_query_returns_nothing(client):
    upload(client, make_workbook([make_row(nom="Pharmacie Centrale")]))

    assert client.get("/api/pharmacies/search", params={"q": "ph"}).json() == []
    assert client.get("/api/pharmacies/search", params={"q": "  p  "}).json() == []


def test_search_requires_query(client):
    assert client.get("/api/pharmacies/search").status_code == 400


def test_login(client):
    assert client.post("/api/admin/login", json={"password": "secret"}).json()["success"] is True
    assert client.post("/api/admin/login", json={"password": "nope"}).status_code == 401


def test_status(client):
    response = client.post("/api/admin/status", json={"password": "secret"})
    assert response.json() == {"pharmacyCount": 0, "lastUpdate": None, "isValid": False}

    upload(client, make_workbook([make_row(nom="A"), make_row(nom="B")]))

    status = client.post("/api/admin/status", json={"password": "secret"}).json()
    assert status["pharmacyCount"] == 2
    assert status["isValid"] is True
    assert status["lastUpdate"] is not None


def test_status_requires_password(client):
    assert client.post("/api/admin/status", json={"password": ""}).status_code == 401


def test_admin_pharmacies_lists_every_week(client):
    upload(
        client,
        make_workbook(
            [
                make_row(nom="Cette Semaine"),
                make_row(nom="Archive", dateDebut="2020-01-01", dateFin="2020-01-07"),
            ]
        ),
    )

    response = client.post("/api/admin/pharmacies", json={"password": "secret"})

    assert [p["name"] for p in response.json()] == ["Archive", "Cette Semaine"]

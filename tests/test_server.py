import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from lead_magnet_client import create_data_client
from lead_magnet_client.config import AuthConfig
from lead_magnet_client.db.base import Base
from lead_magnet_client.ingestion import make_signature
from lead_magnet_client.server import create_app
from lead_magnet_client.server.auth import create_access_token


@pytest.fixture
def api(config):
    """
    Running app plus bearer headers for two users.
    Tables and users are prepared on a private loop; the app client is
    only ever used from the TestClient loop.
    """
    async def _prepare():
        engine = create_async_engine(config.postgres.get_pg_dsn())
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

        client = create_data_client(config)
        try:
            owner = await client.create_user("owner@example.com", "Owner")
            other = await client.create_user("other@example.com", "Other")
            return owner.id, other.id
        finally:
            await client.aclose()

    owner_id, other_id = asyncio.run(_prepare())
    auth = AuthConfig(secret_key="test-secret")
    app = create_app(create_data_client(config), auth=auth)

    with TestClient(app) as http:
        yield SimpleNamespace(
            http=http,
            app=app,
            owner_id=owner_id,
            headers={"Authorization": f"Bearer {create_access_token(owner_id, auth)}"},
            other_headers={"Authorization": f"Bearer {create_access_token(other_id, auth)}"},
            auth=auth,
        )


def upload(api, filename="doc.pdf", content=b"a" * 1024, **form):
    return api.http.post(
        "/api/files",
        files={"file": (filename, content, "application/octet-stream")},
        data=form,
        headers=api.headers,
    )


def test_health(api):
    res = api.http.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "services": {"postgres": "ok", "storage": "ok"}}


def test_upload_success_and_duplicate(api):
    first = upload(api, filename="doc.pdf", content=b"a" * 1024)
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"
    assert set(body["file"]) == {"id", "name", "downloadSlug", "downloadUrl", "pageUrl"}
    slug = body["file"]["downloadSlug"]
    assert body["file"]["downloadUrl"] == f"http://testserver/download/{slug}"
    assert body["file"]["pageUrl"] == f"http://testserver/download-page/xiyi-download?file={slug}"

    second = upload(api, filename="doc.pdf", content=b"b" * 1024)
    assert second.status_code == 200
    assert second.json()["message"] == "File already exists"
    assert second.json()["file"]["downloadSlug"] == slug

    third = upload(api, filename="doc.pdf", content=b"c" * 2048)
    assert third.json()["file"]["downloadSlug"] != slug

    listed = api.http.get("/api/files", headers=api.headers).json()["files"]
    assert len(listed) == 2


def test_upload_uses_display_name(api):
    res = upload(api, filename="raw.pdf", name="Pretty name", description="desc")
    assert res.json()["file"]["name"] == "Pretty name"


def test_upload_in_progress_conflict(api):
    registry = api.app.state.data_client.registry
    fingerprint = make_signature(api.owner_id, "doc.pdf", 1024)
    assert registry.try_admit(fingerprint)

    res = upload(api, filename="doc.pdf", content=b"a" * 1024)

    assert res.status_code == 409
    assert res.json() == {
        "success": False,
        "message": "File is being processed, please retry later",
        "code": "PROCESSING",
    }
    registry.release(fingerprint)
    assert upload(api, filename="doc.pdf", content=b"a" * 1024).status_code == 200


def test_upload_validation_errors(api):
    missing = api.http.post(
        "/api/files", files={"attachment": ("doc.pdf", b"x", "application/pdf")}, headers=api.headers
    )
    assert missing.status_code == 400
    assert missing.json() == {"success": False, "message": "No file uploaded", "code": "NO_FILE"}

    exe = upload(api, filename="setup.exe", content=b"MZ")
    assert exe.status_code == 400
    assert exe.json()["code"] == "FILE_TYPE"
    assert exe.json()["success"] is False


def test_oversized_upload_is_rejected_before_ingestion(api, monkeypatch, blobs):
    client = api.app.state.data_client
    monkeypatch.setattr(client.settings, "max_size_bytes", 1024)
    calls = []
    original_upload = client.upload_file

    async def recording_upload(**kwargs):
        calls.append(len(kwargs["content"]))
        return await original_upload(**kwargs)

    monkeypatch.setattr(client, "upload_file", recording_upload)

    res = upload(api, filename="big.pdf", content=b"x" * 4096)

    assert res.status_code == 413
    assert res.json() == {"success": False, "message": "File size too large", "code": "FILE_TOO_LARGE"}
    assert calls == []
    assert blobs() == []

    assert upload(api, filename="small.pdf", content=b"x" * 1024).status_code == 200
    assert calls == [1024]


def test_authentication_required(api):
    res = api.http.get("/api/files")
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Could not validate credentials"}

    bad = api.http.get("/api/files", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401

    ghost = create_access_token(999, api.auth)
    assert api.http.get("/api/files", headers={"Authorization": f"Bearer {ghost}"}).status_code == 401

    forged = create_access_token(api.owner_id, AuthConfig(secret_key="other-secret"))
    assert api.http.get("/api/files", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_download_and_delete(api):
    body = upload(api, filename="notes.txt", content=b"plain notes").json()["file"]

    res = api.http.get(f"/download/{body['downloadSlug']}")
    assert res.status_code == 200
    assert res.content == b"plain notes"
    assert "notes.txt" in res.headers["content-disposition"]

    details = api.http.get(f"/api/files/{body['id']}", headers=api.headers).json()["file"]
    assert details["downloads"] == 1

    deleted = api.http.delete(f"/api/files/{body['id']}", headers=api.headers)
    assert deleted.json() == {"success": True, "message": "File deleted successfully"}

    gone = api.http.get(f"/download/{body['downloadSlug']}")
    assert gone.status_code == 404
    assert gone.json() == {"success": False, "message": "File not found or no longer available"}


def test_update_file_and_foreign_access(api):
    file_id = upload(api, filename="mine.txt", content=b"mine").json()["file"]["id"]

    res = api.http.put(f"/api/files/{file_id}", json={"is_active": False}, headers=api.headers)
    assert res.status_code == 200
    assert res.json()["file"]["is_active"] is False

    foreign = api.http.get(f"/api/files/{file_id}", headers=api.other_headers)
    assert foreign.status_code == 404
    assert foreign.json()["success"] is False


def test_create_from_content(api):
    res = api.http.post(
        "/api/files/create",
        json={"content": '{"a": 1}', "filename": "data", "fileType": "json", "title": "Data set"},
        headers=api.headers,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["file"]["name"] == "data.json"
    assert body["page"]["title"] == "Data set"

    invalid = api.http.post(
        "/api/files/create",
        json={"content": "{nope", "filename": "data", "fileType": "json"},
        headers=api.headers,
    )
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "INVALID_CONTENT"

    created = api.http.get("/api/files/created", headers=api.headers).json()["files"]
    assert [f["name"] for f in created] == ["data.json"]


def test_page_lead_flow(api):
    file_id = upload(api, filename="ebook.pdf", content=b"%PDF ebook").json()["file"]["id"]

    page = api.http.post(
        "/api/pages", json={"title": "Free ebook", "file_id": file_id}, headers=api.headers
    ).json()["page"]

    public = api.http.get(f"/api/p/{page['slug']}")
    assert public.status_code == 200
    assert public.json()["page"]["file"]["name"] == "ebook.pdf"
    assert "owner_id" not in public.json()["page"]

    submitted = api.http.post(
        f"/download-page/{page['slug']}/submit", json={"name": "Visitor", "email": "visitor@example.com"}
    )
    assert submitted.status_code == 200
    assert submitted.json()["downloadUrl"].startswith("http://testserver/download/")

    invalid = api.http.post(f"/download-page/{page['slug']}/submit", json={"email": "not-an-email"})
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "VALIDATION"

    leads = api.http.get("/api/leads", headers=api.headers).json()["leads"]
    assert [lead["email"] for lead in leads] == ["visitor@example.com"]
    customers = api.http.get("/api/customers", params={"search": "visitor"}, headers=api.headers).json()
    assert customers["total"] == 1

    tracked = api.http.post("/api/analytics/track", json={"page_id": page["id"], "event": "click"})
    assert tracked.json() == {"success": True, "message": "Event tracked"}

    forbidden = api.http.put(f"/api/pages/{page['id']}", json={"title": "Mine now"}, headers=api.other_headers)
    assert forbidden.status_code == 403

    assert api.http.get("/api/p/missing-page").status_code == 404


def test_customer_routes(api):
    created = api.http.post(
        "/api/customers", json={"name": "Ada", "email": "ada@example.com", "phone": "555"}, headers=api.headers
    )
    assert created.status_code == 201
    customer = created.json()["customer"]
    assert customer["status"] == "potential"

    duplicate = api.http.post(
        "/api/customers", json={"name": "Ada", "email": "ada@example.com"}, headers=api.headers
    )
    assert duplicate.status_code == 409

    bad_status = api.http.put(
        f"/api/customers/{customer['id']}", json={"status": "vip"}, headers=api.headers
    )
    assert bad_status.status_code == 400
    assert bad_status.json()["code"] == "VALIDATION"

    updated = api.http.put(
        f"/api/customers/{customer['id']}", json={"status": "active", "notes": "Met at expo"}, headers=api.headers
    )
    assert updated.status_code == 200
    assert updated.json()["customer"]["status"] == "active"
    assert updated.json()["customer"]["phone"] == "555"

    fetched = api.http.get(f"/api/customers/{customer['id']}", headers=api.headers)
    assert fetched.json()["customer"]["notes"] == "Met at expo"

    deleted = api.http.delete(f"/api/customers/{customer['id']}", headers=api.headers)
    assert deleted.json() == {"success": True, "message": "Customer deleted successfully"}

    missing = api.http.get(f"/api/customers/{customer['id']}", headers=api.headers)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Customer not found"}

    assert api.http.get("/api/customers/1").status_code == 401


def test_profile_routes(api):
    upload(api, filename="guide.pdf", content=b"%PDF guide")

    me = api.http.get("/api/profile/me", headers=api.headers)
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "owner@example.com"
    assert me.json()["data"]["file_count"] == 1

    res = api.http.put(
        "/api/profile/me", json={"bio": "Writes guides", "location": "Lisbon"}, headers=api.headers
    )
    assert res.status_code == 200
    assert res.json()["message"] == "Profile updated successfully"
    assert res.json()["data"]["bio"] == "Writes guides"

    other = api.http.get("/api/profile/me", headers=api.other_headers).json()["data"]
    assert other["bio"] is None
    assert other["file_count"] == 0


def test_page_files_routes(api):
    first = upload(api, filename="one.txt", content=b"1").json()["file"]["id"]
    second = upload(api, filename="two.txt", content=b"22").json()["file"]["id"]
    page_id = api.http.post("/api/pages", json={"title": "Bundle"}, headers=api.headers).json()["page"]["id"]

    res = api.http.post(f"/api/page-files/{page_id}/files", json={"file_ids": [first]}, headers=api.headers)
    assert res.status_code == 200

    added = api.http.post(f"/api/page-files/{page_id}/files/{second}", headers=api.headers)
    assert added.status_code == 200
    assert added.json()["file"]["position"] == 1

    again = api.http.post(f"/api/page-files/{page_id}/files/{second}", headers=api.headers)
    assert again.status_code == 409

    moved = api.http.put(
        f"/api/page-files/{page_id}/files/{second}", json={"is_primary": True}, headers=api.headers
    )
    assert moved.json()["file"]["is_primary"] is True

    listed = api.http.get(f"/api/page-files/{page_id}", headers=api.headers).json()["files"]
    assert [(f["file_id"], f["is_primary"]) for f in listed] == [(first, False), (second, True)]

    removed = api.http.delete(f"/api/page-files/{page_id}/files/{first}", headers=api.headers)
    assert removed.json()["success"] is True


def test_unknown_route_uses_envelope(api):
    res = api.http.get("/nope")
    assert res.status_code == 404
    assert res.json()["success"] is False

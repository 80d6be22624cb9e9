"""
tests/test_attributes_routes.py -- Integration tests for /api/attributes.

Coverage:
  - JSON and multipart create, where_used normalization over both transports
  - Ownership: another user's attribute is 404 for read, update and delete,
    and is left untouched
  - File attachments: stored, served from /uploads, replaced (old file
    removed), deleted with the attribute, 413 when over the size limit
  - PUT vs PATCH semantics
  - A failed write removes the new upload; a stale file that cannot be
    deleted is logged, not reported
  - Deeply nested where_used input never becomes a server error

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- admin account, used here as "the other user"
  - member: (token, uid) -- regular account that owns the attributes under test
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from vault.store import VaultStore


def _headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _disk_path(client: TestClient, public_path: str) -> Path:
    return Path(client.app.state.uploads.base_dir) / public_path.rsplit("/", 1)[1]


def _stored_names(client: TestClient) -> set[str]:
    return {p.name for p in Path(client.app.state.uploads.base_dir).iterdir()}


@pytest.fixture
def owned(api_client, member) -> dict:
    """Create a fresh JSON attribute owned by the member account."""
    client, _token, _uid = api_client
    token, _member_id = member
    resp = client.post(
        "/api/attributes",
        json={"key": "phone", "value": "555-0100", "where_used": ["bank", "gym"]},
        headers=_headers(token),
    )
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


class TestAttributeCrud:
    def test_unauthenticated_is_401(self, api_client) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/attributes").status_code == 401
        assert client.post("/api/attributes", json={"key": "k", "value": "v"}).status_code == 401

    def test_create_json(self, api_client, member, owned) -> None:
        _client, _token, _uid = api_client
        _member_token, member_id = member
        assert owned["user_id"] == member_id
        assert owned["where_used"] == ["bank", "gym"]
        assert owned["file_path"] is None

    def test_where_used_round_trip_preserves_order(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            json={"key": "k", "value": "v", "where_used": ["b", "a", "b"]},
            headers=_headers(token),
        ).json()
        fetched = client.get(f"/api/attributes/{created['id']}", headers=_headers(token)).json()
        assert fetched["where_used"] == ["b", "a"]

    def test_create_requires_key_and_value(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.post("/api/attributes", json={"key": "only-key"}, headers=_headers(token))
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_create_rejects_non_object_json(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.post("/api/attributes", json=["not", "an", "object"], headers=_headers(token))
        assert resp.status_code == 400

    def test_list_contains_only_own_newest_first(self, api_client, member, owned) -> None:
        client, admin_token, _uid = api_client
        token, member_id = member
        client.post("/api/attributes", json={"key": "admin-only", "value": "x"}, headers=_headers(admin_token))

        data = client.get("/api/attributes", headers=_headers(token)).json()
        assert data[0]["id"] == owned["id"]
        assert all(a["user_id"] == member_id for a in data)
        assert "admin-only" not in {a["key"] for a in data}

    def test_put_replaces_fields(self, api_client, member, owned) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.put(
            f"/api/attributes/{owned['id']}",
            json={"key": "mobile", "value": "555-0199"},
            headers=_headers(token),
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert (data["key"], data["value"], data["where_used"]) == ("mobile", "555-0199", [])

    def test_put_requires_full_body(self, api_client, member, owned) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.put(f"/api/attributes/{owned['id']}", json={"value": "x"}, headers=_headers(token))
        assert resp.status_code == 400

    def test_patch_changes_only_given_fields(self, api_client, member, owned) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.patch(
            f"/api/attributes/{owned['id']}",
            json={"where_used": '["crm"]'},
            headers=_headers(token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["key"] == "phone"
        assert data["value"] == "555-0100"
        assert data["where_used"] == ["crm"]

    def test_patch_with_empty_body_rejected(self, api_client, member, owned) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.patch(f"/api/attributes/{owned['id']}", json={}, headers=_headers(token))
        assert resp.status_code == 400
        assert resp.json()["code"] == "no_changes"

    def test_delete(self, api_client, member, owned) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.delete(f"/api/attributes/{owned['id']}", headers=_headers(token))
        assert resp.status_code == 204
        assert client.get(f"/api/attributes/{owned['id']}", headers=_headers(token)).status_code == 404

    def test_unknown_id_is_404(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        assert client.get("/api/attributes/999999", headers=_headers(token)).status_code == 404
        assert client.delete("/api/attributes/999999", headers=_headers(token)).status_code == 404


class TestAttributeOwnership:
    """Another user's attribute must behave exactly like a missing one."""

    def test_other_user_cannot_read(self, api_client, owned) -> None:
        client, admin_token, _uid = api_client
        resp = client.get(f"/api/attributes/{owned['id']}", headers=_headers(admin_token))
        assert resp.status_code == 404

    def test_other_user_cannot_update(self, api_client, member, owned) -> None:
        client, admin_token, _uid = api_client
        token, _member_id = member
        put = client.put(
            f"/api/attributes/{owned['id']}",
            json={"key": "stolen", "value": "x"},
            headers=_headers(admin_token),
        )
        patch = client.patch(f"/api/attributes/{owned['id']}", json={"value": "x"}, headers=_headers(admin_token))
        assert put.status_code == 404
        assert patch.status_code == 404
        unchanged = client.get(f"/api/attributes/{owned['id']}", headers=_headers(token)).json()
        assert unchanged["key"] == "phone"
        assert unchanged["value"] == "555-0100"

    def test_other_user_cannot_delete(self, api_client, member, owned) -> None:
        client, admin_token, _uid = api_client
        token, _member_id = member
        resp = client.delete(f"/api/attributes/{owned['id']}", headers=_headers(admin_token))
        assert resp.status_code == 404
        assert client.get(f"/api/attributes/{owned['id']}", headers=_headers(token)).status_code == 200


class TestAttributeFiles:
    def test_multipart_create_with_file(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.post(
            "/api/attributes",
            data={"key": "passport", "value": "X1234567", "where_used": ['["border"]', "airline"]},
            files={"file": ("scan.pdf", b"%PDF-1.4 test", "application/pdf")},
            headers=_headers(token),
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["where_used"] == ["border", "airline"]
        assert data["file_name"] == "scan.pdf"
        assert data["file_type"] == "pdf"
        assert data["file_size"] == len(b"%PDF-1.4 test")
        assert data["file_path"].startswith("/uploads/")
        assert _disk_path(client, data["file_path"]).read_bytes() == b"%PDF-1.4 test"

        served = client.get(data["file_path"])
        assert served.status_code == 200
        assert served.content == b"%PDF-1.4 test"

    def test_multipart_without_file(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        resp = client.post(
            "/api/attributes",
            data={"key": "city", "value": "Oslo", "where_used": '["post", "tax"]'},
            headers=_headers(token),
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert resp.json()["where_used"] == ["post", "tax"]
        assert resp.json()["file_path"] is None

    def test_replacing_file_removes_old_one(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "photo", "value": "me"},
            files={"file": ("a.png", b"first", "image/png")},
            headers=_headers(token),
        ).json()
        old_disk = _disk_path(client, created["file_path"])
        assert old_disk.exists()

        resp = client.put(
            f"/api/attributes/{created['id']}",
            data={"key": "photo", "value": "me again"},
            files={"file": ("b.png", b"second", "image/png")},
            headers=_headers(token),
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        updated = resp.json()
        assert updated["file_path"] != created["file_path"]
        assert updated["file_name"] == "b.png"
        assert not old_disk.exists()
        assert _disk_path(client, updated["file_path"]).read_bytes() == b"second"

    def test_update_without_file_keeps_file(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "doc", "value": "v1"},
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=_headers(token),
        ).json()
        resp = client.patch(f"/api/attributes/{created['id']}", json={"value": "v2"}, headers=_headers(token))
        assert resp.status_code == 200
        assert resp.json()["file_path"] == created["file_path"]
        assert _disk_path(client, created["file_path"]).exists()

    def test_delete_removes_file(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "tmp", "value": "v"},
            files={"file": ("t.txt", b"bye", "text/plain")},
            headers=_headers(token),
        ).json()
        disk = _disk_path(client, created["file_path"])
        assert client.delete(f"/api/attributes/{created['id']}", headers=_headers(token)).status_code == 204
        assert not disk.exists()

    def test_oversized_file_is_413(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        too_big = b"x" * (get_settings().max_upload_bytes + 1)
        resp = client.post(
            "/api/attributes",
            data={"key": "big", "value": "v"},
            files={"file": ("big.bin", too_big, "application/octet-stream")},
            headers=_headers(token),
        )
        assert resp.status_code == 413
        assert resp.json()["code"] == "file_too_large"
        keys = {a["key"] for a in client.get("/api/attributes", headers=_headers(token)).json()}
        assert "big" not in keys

    def test_other_user_upload_does_not_touch_owner_file(self, api_client, member) -> None:
        client, admin_token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "id-card", "value": "v"},
            files={"file": ("card.png", b"card", "image/png")},
            headers=_headers(token),
        ).json()
        resp = client.put(
            f"/api/attributes/{created['id']}",
            data={"key": "x", "value": "y"},
            files={"file": ("evil.png", b"evil", "image/png")},
            headers=_headers(admin_token),
        )
        assert resp.status_code == 404
        assert _disk_path(client, created["file_path"]).read_bytes() == b"card"


class TestAttributeFileCleanup:
    """A new upload never outlives a failed write; a stale file never fails a request."""

    def test_failed_insert_removes_new_upload(self, api_client, member, monkeypatch) -> None:
        client, _token, _uid = api_client
        token, _member_id = member

        def broken(self, attribute):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(VaultStore, "create_attribute", broken)
        before = _stored_names(client)
        resp = client.post(
            "/api/attributes",
            data={"key": "doomed", "value": "v"},
            files={"file": ("d.txt", b"doomed", "text/plain")},
            headers=_headers(token),
        )
        assert resp.status_code == 500, f"Expected 500, got {resp.status_code}: {resp.text}"
        assert resp.json()["code"] == "internal_error"
        assert _stored_names(client) == before

    def test_failed_update_removes_new_upload_and_keeps_old(self, api_client, member, monkeypatch) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "licence", "value": "v"},
            files={"file": ("old.txt", b"old", "text/plain")},
            headers=_headers(token),
        ).json()

        def broken(self, attribute_id, user_id, **fields):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(VaultStore, "update_attribute", broken)
        before = _stored_names(client)
        resp = client.put(
            f"/api/attributes/{created['id']}",
            data={"key": "licence", "value": "v2"},
            files={"file": ("new.txt", b"new", "text/plain")},
            headers=_headers(token),
        )
        assert resp.status_code == 500
        assert _stored_names(client) == before
        assert _disk_path(client, created["file_path"]).read_bytes() == b"old"

    def test_vanished_row_removes_new_upload(self, api_client, member, owned, monkeypatch) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        monkeypatch.setattr(VaultStore, "update_attribute", lambda self, attribute_id, user_id, **fields: False)
        before = _stored_names(client)
        resp = client.patch(
            f"/api/attributes/{owned['id']}",
            data={"value": "late"},
            files={"file": ("late.txt", b"late", "text/plain")},
            headers=_headers(token),
        )
        assert resp.status_code == 404
        assert _stored_names(client) == before

    def test_undeletable_stale_file_is_logged(self, api_client, member, monkeypatch, caplog) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        created = client.post(
            "/api/attributes",
            data={"key": "scan", "value": "v"},
            files={"file": ("s.txt", b"scan", "text/plain")},
            headers=_headers(token),
        ).json()
        disk = _disk_path(client, created["file_path"])

        def refuse(self, missing_ok=False):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(Path, "unlink", refuse)
        with caplog.at_level(logging.WARNING, logger="proid.vault"):
            resp = client.delete(f"/api/attributes/{created['id']}", headers=_headers(token))
        assert resp.status_code == 204
        assert "Could not remove stale upload" in caplog.text
        assert client.get(f"/api/attributes/{created['id']}", headers=_headers(token)).status_code == 404

        monkeypatch.undo()
        disk.unlink()


class TestDeeplyNestedWhereUsed:
    def test_unbalanced_brackets_in_form_kept_as_text(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        nested = "[" * 100_000
        resp = client.post(
            "/api/attributes",
            data={"key": "brackets", "value": "v", "where_used": nested},
            headers=_headers(token),
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text[:200]}"
        assert resp.json()["where_used"] == [nested]

    def test_deeply_nested_json_body_is_400(self, api_client, member) -> None:
        client, _token, _uid = api_client
        token, _member_id = member
        body = '{"key": "k", "value": "v", "where_used": ' + "[" * 100_000 + "]" * 100_000 + "}"
        resp = client.post(
            "/api/attributes",
            content=body,
            headers={**_headers(token), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

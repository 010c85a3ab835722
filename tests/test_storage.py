"""
Tests — Object storage backends and the multi-file upload facade.
"""

import io
import os
from unittest.mock import MagicMock

import pytest
import requests
from werkzeug.datastructures import FileStorage

from oris.core.exceptions import StorageError, ValidationError
from oris.services.storage import (
    LocalStorageBackend,
    StorageService,
    SupabaseStorageBackend,
    build_object_name,
)


def _file(name="photo.jpg", content_type="image/jpeg", data=b"jpegdata"):
    return FileStorage(stream=io.BytesIO(data), filename=name, content_type=content_type)


class TestObjectName:

    def test_keeps_extension_and_prefix(self):
        name = build_object_name("/risks/", "Evidence.PNG")
        assert name.startswith("risks/")
        assert name.endswith(".png")

    def test_names_are_unique(self):
        assert build_object_name("x", "a.pdf") != build_object_name("x", "a.pdf")


class TestLocalBackend:

    def test_put_writes_file(self, tmp_path):
        backend = LocalStorageBackend(str(tmp_path), "http://cdn.test/")
        url = backend.put("reports/r.json", b"{}", "application/json", upsert=False)
        assert url == "http://cdn.test/reports/r.json"
        assert (tmp_path / "reports" / "r.json").read_bytes() == b"{}"

    def test_existing_object_requires_upsert(self, tmp_path):
        backend = LocalStorageBackend(str(tmp_path), "http://cdn.test")
        backend.put("a.txt", b"1", "text/plain", upsert=False)
        with pytest.raises(StorageError):
            backend.put("a.txt", b"2", "text/plain", upsert=False)
        backend.put("a.txt", b"2", "text/plain", upsert=True)
        assert (tmp_path / "a.txt").read_bytes() == b"2"
        assert not os.path.exists(tmp_path / "a.txt.part")


class TestSupabaseBackend:

    def _backend(self, response=None, error=None):
        session = MagicMock(spec=requests.Session)
        if error is not None:
            session.post.side_effect = error
        else:
            session.post.return_value = response
        return SupabaseStorageBackend("https://proj.supabase.co/", "service-key", "oris", session=session), session

    def test_upload_posts_and_returns_public_url(self):
        backend, session = self._backend(MagicMock(status_code=200, text="{}"))
        url = backend.put("risks/1.png", b"img", "image/png", upsert=True)

        assert url == "https://proj.supabase.co/storage/v1/object/public/oris/risks/1.png"
        args, kwargs = session.post.call_args
        assert args[0] == "https://proj.supabase.co/storage/v1/object/oris/risks/1.png"
        assert kwargs["headers"]["Authorization"] == "Bearer service-key"
        assert kwargs["headers"]["x-upsert"] == "true"

    def test_http_error(self):
        backend, _ = self._backend(MagicMock(status_code=403, text="forbidden"))
        with pytest.raises(StorageError, match="HTTP 403"):
            backend.put("risks/1.png", b"img", "image/png", upsert=False)

    def test_network_error(self):
        backend, _ = self._backend(error=requests.ConnectionError("unreachable"))
        with pytest.raises(StorageError):
            backend.put("risks/1.png", b"img", "image/png", upsert=False)

    def test_missing_credentials(self):
        with pytest.raises(StorageError):
            SupabaseStorageBackend("", "", "oris")


class TestStorageService:

    def test_upload_files(self, app):
        uploaded = StorageService.upload_files([_file(), _file("scan.pdf", "application/pdf")], prefix="risks")
        assert [u["name"] for u in uploaded] == ["photo.jpg", "scan.pdf"]
        assert uploaded[0]["size"] == len(b"jpegdata")
        assert all(u["url"].startswith("http://storage.test/uploads/risks/") for u in uploaded)

    def test_rejects_before_any_upload(self, app):
        files = [_file(), _file("virus.exe", "application/octet-stream")]
        with pytest.raises(ValidationError):
            StorageService.upload_files(files, prefix="risks")
        assert not os.path.exists(os.path.join(app.config["STORAGE_LOCAL_DIR"], "risks"))

    def test_rejects_oversized(self, app):
        app.config["MAX_FILE_SIZE"] = 4
        try:
            with pytest.raises(ValidationError):
                StorageService.upload_files([_file()], prefix="risks")
        finally:
            app.config["MAX_FILE_SIZE"] = 5 * 1024 * 1024

    def test_unknown_backend(self, app):
        app.config["STORAGE_BACKEND"] = "ftp"
        try:
            with pytest.raises(StorageError):
                StorageService.backend()
        finally:
            app.config["STORAGE_BACKEND"] = "local"


class TestEvidenceUpload:

    def test_risk_with_evidence(self, client, auth_headers):
        form = {
            "title": "Frayed safety harness",
            "description": "Harness strap visibly frayed on crane 2",
            "category": "Infraestrutura",
            "location": "Yard",
            "priority": "Alta",
            "evidenceFiles": [(io.BytesIO(b"img"), "strap.jpg", "image/jpeg")],
        }
        res = client.post("/api/v1/risks", data=form, headers=auth_headers,
                          content_type="multipart/form-data")
        assert res.status_code == 201
        evidence = res.get_json()["evidence_files"]
        assert evidence[0]["name"] == "strap.jpg"
        assert set(evidence[0]) == {"url", "name", "type"}

    def test_too_many_files(self, client, auth_headers):
        form = {
            "title": "Frayed safety harness",
            "evidenceFiles": [(io.BytesIO(b"img"), f"{i}.jpg", "image/jpeg") for i in range(6)],
        }
        res = client.post("/api/v1/risks", data=form, headers=auth_headers,
                          content_type="multipart/form-data")
        assert res.status_code == 422

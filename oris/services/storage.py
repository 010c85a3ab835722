"""Object storage client.

Backends (``STORAGE_BACKEND``):
    - local    — writes under ``STORAGE_LOCAL_DIR``; URLs under
                 ``STORAGE_PUBLIC_BASE_URL``
    - supabase — Supabase Storage REST API over ``requests``

Every upload is all-or-nothing: on failure nothing is left behind and a
``StorageError`` is raised.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from abc import ABC, abstractmethod

import requests
from flask import current_app

from oris.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)


def build_object_name(prefix: str, filename: str) -> str:
    """``<prefix>/<millis>_<random><ext>`` — unique, keeps the extension."""
    ext = os.path.splitext(filename or "")[1].lower()
    stem = f"{int(time.time() * 1000)}_{secrets.randbelow(10**9)}{ext}"
    return f"{prefix.strip('/')}/{stem}" if prefix else stem


class StorageBackend(ABC):
    @abstractmethod
    def put(self, object_name: str, data: bytes, content_type: str, *, upsert: bool) -> str:
        """Store ``data`` and return its public URL."""


class LocalStorageBackend(StorageBackend):
    def __init__(self, root_dir: str, public_base_url: str) -> None:
        self.root_dir = root_dir
        self.public_base_url = public_base_url.rstrip("/")

    def put(self, object_name, data, content_type, *, upsert):
        path = os.path.join(self.root_dir, *object_name.split("/"))
        if os.path.exists(path) and not upsert:
            raise StorageError(f"Object already exists: {object_name}")
        tmp_path = f"{path}.part"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Local upload failed for {object_name}: {exc}") from exc
        return f"{self.public_base_url}/{object_name}"


class SupabaseStorageBackend(StorageBackend):
    """Supabase Storage REST API.

    Upload:  POST {url}/storage/v1/object/{bucket}/{name}
    Public:  {url}/storage/v1/object/public/{bucket}/{name}
    """

    def __init__(self, url: str, key: str, bucket: str, timeout: int = 30,
                 session: requests.Session | None = None) -> None:
        if not url or not key:
            raise StorageError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")
        self.url = url.rstrip("/")
        self.key = key
        self.bucket = bucket
        self.timeout = timeout
        self._session = session or requests.Session()

    def _headers(self, content_type: str, upsert: bool) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.key}",
            "apikey": self.key,
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }

    def public_url(self, object_name: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{object_name}"

    def put(self, object_name, data, content_type, *, upsert):
        endpoint = f"{self.url}/storage/v1/object/{self.bucket}/{object_name}"
        try:
            resp = self._session.post(
                endpoint,
                data=data,
                headers=self._headers(content_type, upsert),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageError(f"Supabase upload failed for {object_name}: {exc}") from exc
        if resp.status_code >= 300:
            raise StorageError(
                f"Supabase upload failed for {object_name}: HTTP {resp.status_code} {resp.text[:200]}"
            )
        return self.public_url(object_name)


class StorageService:
    """Facade used by services; picks the backend from app config."""

    @staticmethod
    def backend() -> StorageBackend:
        cfg = current_app.config
        kind = cfg.get("STORAGE_BACKEND", "local")
        if kind == "supabase":
            return SupabaseStorageBackend(
                cfg.get("SUPABASE_URL"),
                cfg.get("SUPABASE_KEY"),
                cfg.get("SUPABASE_BUCKET", "oris"),
                timeout=cfg.get("STORAGE_TIMEOUT", 30),
            )
        if kind == "local":
            return LocalStorageBackend(cfg["STORAGE_LOCAL_DIR"], cfg["STORAGE_PUBLIC_BASE_URL"])
        raise StorageError(f"Unknown storage backend: {kind}")

    @staticmethod
    def upload(data: bytes, content_type: str, *, prefix: str = "", filename: str = "",
               object_name: str | None = None, upsert: bool = False) -> str:
        """Upload ``data`` and return its public URL."""
        name = object_name or build_object_name(prefix, filename)
        url = StorageService.backend().put(name, data, content_type, upsert=upsert)
        logger.info("Stored %s (%d bytes, %s)", name, len(data), content_type)
        return url

    @staticmethod
    def upload_files(files, *, prefix: str) -> list[dict]:
        """Upload werkzeug ``FileStorage`` objects; returns ``[{url, name, type, size}]``.

        All files are validated before any upload starts.
        """
        cfg = current_app.config
        allowed = cfg.get("ALLOWED_FILE_TYPES", ())
        max_size = cfg.get("MAX_FILE_SIZE", 5 * 1024 * 1024)

        payloads = []
        for f in files:
            data = f.read()
            if f.mimetype not in allowed:
                raise ValidationError(
                    "Unsupported file type",
                    details={"files": f"{f.filename}: {f.mimetype} is not allowed"},
                )
            if len(data) > max_size:
                raise ValidationError(
                    "File too large",
                    details={"files": f"{f.filename}: exceeds {max_size} bytes"},
                )
            payloads.append((f.filename, f.mimetype, data))

        return [
            {
                "url": StorageService.upload(data, mimetype, prefix=prefix, filename=name),
                "name": name,
                "type": mimetype,
                "size": len(data),
            }
            for name, mimetype, data in payloads
        ]

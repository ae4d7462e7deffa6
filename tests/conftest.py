# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up mock environment variables before any imports
# - Gives every test its own SQLite database
# - Replaces Supabase Storage with an in-memory fake
# - Records queued Celery tasks instead of contacting a broker
# - Factories for users, cases, uploads and detections
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-mortiscope")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MAIL_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "development")

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from celery.app.task import Task

from app.auth import security
from core.services.storage_service import StorageService
from lib import database
from lib.orm import AnalysisResult, Case, Detection, Upload, User, utcnow

TEST_PASSWORD = "Tr0pical-Blowfly!"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db(tmp_path):
    """Session on a fresh SQLite file database (shared with session_scope)."""
    database.configure(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_db()

    session = database.get_session_factory()()
    try:
        yield session
    finally:
        session.close()
        database.get_engine().dispose()


# =============================================================================
# Storage
# =============================================================================

class FakeStorage:
    """In-memory stand-in for the Supabase bucket, patched onto StorageService."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.moved: list[tuple[str, str]] = []

    def create_presigned_upload(self, key: str) -> dict[str, str]:
        return {"url": f"https://storage.test/upload/{key}", "token": "upload-token", "key": key}

    def get_signed_url(self, key: str, expires_in: int | None = None) -> str:
        return f"https://storage.test/signed/{key}"

    def public_url(self, key: str) -> str:
        return f"https://storage.test/public/{key}"

    def upload_bytes(self, key: str, content: bytes, content_type: str) -> str:
        self.objects[key] = content
        return key

    def download_bytes(self, key: str) -> bytes:
        return self.objects[key]

    def move(self, source_key: str, destination_key: str) -> str:
        self.moved.append((source_key, destination_key))
        if source_key in self.objects:
            self.objects[destination_key] = self.objects.pop(source_key)
        return destination_key

    def delete_files(self, keys: list[str]) -> bool:
        self.deleted.extend(keys)
        for key in keys:
            self.objects.pop(key, None)
        return True


@pytest.fixture(autouse=True)
def storage(monkeypatch):
    """Every test runs against the in-memory storage fake."""
    fake = FakeStorage()
    for name in (
        "create_presigned_upload",
        "get_signed_url",
        "public_url",
        "upload_bytes",
        "download_bytes",
        "move",
        "delete_files",
    ):
        monkeypatch.setattr(StorageService, name, getattr(fake, name))
    return fake


# =============================================================================
# Celery
# =============================================================================

@pytest.fixture(autouse=True)
def queued(monkeypatch):
    """
    Record tasks queued with .delay() instead of sending them to the broker.

    Each entry is (task short name, positional args); the fake AsyncResult ids
    are "task-1", "task-2", ...
    """
    calls = []

    def apply_async(self, args=None, kwargs=None, **options):
        calls.append((self.name.rsplit(".", 1)[-1], tuple(args or ())))
        return SimpleNamespace(id=f"task-{len(calls)}")

    monkeypatch.setattr(Task, "apply_async", apply_async)
    return calls


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db):
    def factory(email: str = "analyst@forensics.org", verified: bool = True, **fields) -> User:
        user = User(
            name=fields.pop("name", "Maria Santos"),
            email=email,
            password_hash=security.hash_password(fields.pop("password", TEST_PASSWORD)),
            email_verified_at=utcnow() if verified else None,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return factory


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def make_case(db):
    def factory(
        user: User,
        case_name: str = "Riverside Case 12",
        status: str = "active",
        case_date: datetime | None = None,
        temperature_celsius: float = 28.5,
        **fields,
    ) -> Case:
        case = Case(
            user_id=user.id,
            case_name=case_name,
            case_date=case_date or datetime(2025, 3, 14, 9, 30),
            temperature_celsius=temperature_celsius,
            status=status,
            **fields,
        )
        db.add(case)
        db.commit()
        return case

    return factory


@pytest.fixture
def make_upload(db):
    counter = {"n": 0}

    def factory(case: Case, name: str | None = None, type: str = "image/jpeg", **fields) -> Upload:
        counter["n"] += 1
        name = name or f"scene-{counter['n']}.jpg"
        key = fields.pop("key", f"uploads/{case.user_id}/{case.id}/{name}")
        upload = Upload(
            key=key,
            name=name,
            url=f"https://storage.test/public/{key}",
            size=fields.pop("size", 2048),
            type=type,
            width=fields.pop("width", 640),
            height=fields.pop("height", 480),
            user_id=case.user_id,
            case_id=case.id,
            created_at=fields.pop("created_at", utcnow() + timedelta(seconds=counter["n"])),
            **fields,
        )
        db.add(upload)
        db.commit()
        return upload

    return factory


@pytest.fixture
def make_detection(db):
    def factory(
        upload: Upload,
        label: str = "instar_3",
        confidence: float | None = 0.9,
        status: str = "model_generated",
        **fields,
    ) -> Detection:
        detection = Detection(
            upload_id=upload.id,
            label=label,
            original_label=fields.pop("original_label", label),
            confidence=confidence,
            original_confidence=fields.pop("original_confidence", confidence),
            x_min=fields.pop("x_min", 10.0),
            y_min=fields.pop("y_min", 20.0),
            x_max=fields.pop("x_max", 110.0),
            y_max=fields.pop("y_max", 90.0),
            status=status,
            **fields,
        )
        db.add(detection)
        db.commit()
        return detection

    return factory


@pytest.fixture
def make_result(db):
    def factory(case: Case, **fields) -> AnalysisResult:
        result = AnalysisResult(
            case_id=case.id,
            status=fields.pop("status", "completed"),
            total_counts=fields.pop("total_counts", {"instar_3": 1}),
            oldest_stage_detected=fields.pop("oldest_stage_detected", "instar_3"),
            stage_used_for_calculation=fields.pop("stage_used_for_calculation", "instar_3"),
            pmi_days=fields.pop("pmi_days", 1.25),
            pmi_hours=fields.pop("pmi_hours", 30.0),
            pmi_minutes=fields.pop("pmi_minutes", 1800.0),
            **fields,
        )
        db.add(result)
        db.commit()
        return result

    return factory


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def client(db):
    """TestClient bound to the test database (lifespan is not run)."""
    from fastapi.testclient import TestClient

    from app.main import app

    return TestClient(app)


@pytest.fixture
def auth_headers(db, user):
    """Bearer header for a signed-in session of `user`."""
    from core.services.account_service import AccountService

    tokens = AccountService.create_session(db, user, "127.0.0.1", "pytest")
    return {"Authorization": f"Bearer {tokens['access_token']}"}

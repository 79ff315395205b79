"""
Shared fixtures for the API tests.

- `db`: an in-memory mongomock database with the production indexes
- `storage`: an in-memory blob store that records uploads and deletions
- `client`: a TestClient wired to both through dependency overrides
- role fixtures (`student`, `admin_user`, `superadmin`) carrying auth headers
- `make_pdf`: inserts a note straight into the `pdf` collection
"""
import itertools
from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db, utcnow
from errors import DependencyFailure
from schemas import Pdf as PdfSchema, User as UserSchema
from security import create_access_token, hash_password
from storage import StoredFile, get_storage

PASSWORD = "testpass123"
PASSWORD_HASH = hash_password(PASSWORD)

_counter = itertools.count(1)


class FakeStorage:
    """Stands in for the S3 bucket."""

    def __init__(self):
        self.files = {}
        self.deleted = []
        self.fail_deletes = False
        self.fail_uploads = False

    def upload(self, payload, folder, filename, content_type):
        if self.fail_uploads:
            raise DependencyFailure("PutObject to bucket catchup-notes failed: timeout")
        key = f"{folder}/{next(_counter)}_{filename}"
        self.files[key] = payload
        return StoredFile(url=f"https://files.example.org/{key}", storage_id=key)

    def destroy(self, storage_id):
        if self.fail_deletes:
            raise DependencyFailure(f"Deleting {storage_id} failed: storage unavailable")
        self.deleted.append(storage_id)
        self.files.pop(storage_id, None)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["catchup_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(db, storage):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


@pytest.fixture
def make_user(db):
    def _make_user(role="student", name=None, email=None):
        n = next(_counter)
        doc = UserSchema(
            name=name or f"{role.title()} {n}",
            email=email or f"{role}{n}@catchup.io",
            password_hash=PASSWORD_HASH,
            role=role,
        ).model_dump()
        res = db["user"].insert_one(doc)
        uid = str(res.inserted_id)
        return {"id": uid, "email": doc["email"], "role": role, "headers": auth_headers(uid)}
    return _make_user


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def admin_user(make_user):
    return make_user("admin")


@pytest.fixture
def superadmin(make_user):
    return make_user("superadmin")


@pytest.fixture
def make_pdf(db, storage, admin_user):
    def _make_pdf(uploader=None, age_days=0, **overrides):
        n = next(_counter)
        key = f"catchup-pdfs/{n}_notes.pdf"
        storage.files[key] = b"%PDF-1.4"
        fields = dict(
            title=f"Lecture notes {n}",
            description="Unit summaries",
            semester="3",
            branch="CSE",
            year="2",
            file_url=f"https://files.example.org/{key}",
            storage_id=key,
            file_name="notes.pdf",
            file_size=8,
            uploaded_by=(uploader or admin_user)["id"],
            created_at=utcnow() - timedelta(days=age_days),
        )
        fields.update(overrides)
        doc = PdfSchema(**fields).model_dump()
        res = db["pdf"].insert_one(doc)
        return str(res.inserted_id)
    return _make_pdf

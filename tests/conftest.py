import io
import os
import threading

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")

import pytest
from fastapi.testclient import TestClient
from PIL import Image as PILImage
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cropscan import auth
from cropscan.database import get_db, init_db, make_engine
from cropscan.errors import AppError
from cropscan.main import app
from cropscan.models import AdminProfile, FarmerProfile, Role, User
from cropscan.services.ml import get_ml_client
from cropscan.services.storage import get_storage, public_id_from_url


class FakeStorage:
    """In-memory stand-in for Cloudinary; safe to call from worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = 0
        self.assets = {}
        self.destroyed = []
        self.fail_variants = set()

    def upload(self, data, variant):
        if variant in self.fail_variants:
            raise RuntimeError(f"upload of {variant} rejected")
        folder = "thumbnails" if variant == "thumbnail" else variant
        with self._lock:
            self._counter += 1
            public_id = f"crop-disease/{folder}/asset{self._counter}"
            self.assets[public_id] = data
        return {
            "url": f"https://res.cloudinary.com/demo/image/upload/v1/{public_id}.jpg",
            "public_id": public_id,
        }

    def destroy(self, public_id):
        with self._lock:
            self.destroyed.append(public_id)
            return self.assets.pop(public_id, None) is not None

    def download(self, url):
        with self._lock:
            data = self.assets.get(public_id_from_url(url))
        if data is None:
            raise AppError(502, "Failed to download stored image")
        return data


class FakeMLClient:
    def __init__(self):
        self.result = {
            "predicted_class": "Tomato___Late_blight",
            "confidence": 0.93,
            "is_healthy": False,
            "treatment": {"remedy": "Apply systemic fungicide"},
            "processing_time": 0.42,
            "image_info": {"width": 512, "height": 512},
            "timestamp": "2024-01-01T00:00:00",
            "raw": {"success": True},
        }
        self.error = None
        self.calls = []

    def health(self):
        return {"is_healthy": self.error is None, "status": "healthy", "model_loaded": True}

    def info(self):
        return {"health": {"status": "healthy"}, "models": {"classes": 38}, "service_url": "http://ml.test"}

    def predict(self, data, filename="image.jpg"):
        self.calls.append(filename)
        if self.error is not None:
            raise self.error
        return dict(self.result)

    def predict_from_url(self, url, image_id):
        return self.predict(b"", filename=f"image_{image_id}.jpg")


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def ml_client():
    return FakeMLClient()


@pytest.fixture
def client(db, storage, ml_client):
    def _get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_ml_client] = lambda: ml_client
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def make_user(db, role=Role.FARMER, email=None, password="secret123", name="Test User", **profile):
    email = email or f"{role.value.lower()}@example.com"
    user = User(email=email, password=auth.hash_password(password), name=name, role=role)
    if role == Role.FARMER:
        profile.setdefault("crop_types", ["rice"])
        user.farmer_profile = FarmerProfile(**profile)
    else:
        user.admin_profile = AdminProfile(**profile)
    db.add(user)
    db.commit()
    return user


def auth_header(user):
    return {"Authorization": f"Bearer {auth.create_access_token(user)}"}


@pytest.fixture
def admin(db):
    return make_user(db, Role.ADMIN, email="admin@crophealth.com", name="System Admin",
                     department="Agriculture Technology")


@pytest.fixture
def farmer(db):
    return make_user(db, Role.FARMER, email="farmer@example.com", name="Demo Farmer",
                     crop_types=["rice", "potato"], farm_size=5.5, soil_type="loamy")


@pytest.fixture
def leaf_png():
    buf = io.BytesIO()
    PILImage.new("RGB", (800, 600), (40, 160, 60)).save(buf, format="PNG")
    return buf.getvalue()

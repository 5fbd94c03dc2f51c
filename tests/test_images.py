import httpx
import pytest
from PIL import Image as PILImage

from cropscan.errors import AppError
from cropscan.main import app
from cropscan.models import DiseaseHistory, Image, Prediction, ProcessingStatus, Role
from cropscan.seed import seed_diseases
from cropscan.services.ml import MLClient, get_ml_client
from cropscan.services.storage import public_id_from_url

from conftest import auth_header, make_user


@pytest.fixture
def catalog(db):
    seed_diseases(db)


def _upload(client, user, data, name="leaf.png", content_type="image/png", **params):
    return client.post(
        "/api/v1/image/upload",
        files={"image": (name, data, content_type)},
        params=params,
        headers=auth_header(user),
    )


def test_upload_stores_variants_and_prediction(client, db, storage, catalog, farmer, leaf_png):
    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["width"] == 800 and data["height"] == 600
    assert data["processing_status"] == "COMPLETED"
    assert set(data["urls"]) == {"original", "processed", "thumbnail"}
    assert "/crop-disease/thumbnails/" in data["urls"]["thumbnail"]
    assert "/upload/w_300,h_200,c_fill/" in data["transformed_urls"]["small"]
    assert len(storage.assets) == 3

    prediction = data["prediction"]
    assert prediction["predicted_class"] == "Tomato___Late_blight"
    assert prediction["disease"]["name"] == "Blight Disease"
    assert data["prediction_error"] is None
    assert len(data["predictions"]) == 1

    history = db.query(DiseaseHistory).all()
    assert len(history) == 1
    assert history[0].user_id == farmer.id


def test_upload_survives_ml_failure(client, db, catalog, ml_client, farmer, leaf_png):
    ml_client.error = AppError(503, "ML prediction service is currently unavailable")
    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["prediction"] is None
    assert data["prediction_error"] == "ML prediction service is currently unavailable"
    assert db.query(Image).count() == 1
    assert db.query(Prediction).count() == 0


def test_upload_without_prediction(client, ml_client, farmer, leaf_png):
    r = _upload(client, farmer, leaf_png, predict="false")
    assert r.status_code == 201
    assert r.json()["data"]["prediction"] is None
    assert ml_client.calls == []


def test_unmapped_prediction_writes_no_history(client, db, catalog, ml_client, farmer, leaf_png):
    ml_client.result["predicted_class"] = "Strange Wilt"
    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 201
    assert r.json()["data"]["prediction"]["disease"] is None
    assert db.query(DiseaseHistory).count() == 0


def test_storage_failure_cleans_up(client, db, storage, farmer, leaf_png):
    storage.fail_variants = {"thumbnail"}
    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 500
    assert r.json()["message"] == "Failed to process and save image"
    assert storage.assets == {}
    assert len(storage.destroyed) == 2
    assert db.query(Image).count() == 0


def test_upload_rejects_bad_input(client, farmer, leaf_png):
    r = _upload(client, farmer, leaf_png, name="notes.txt", content_type="text/plain")
    assert r.status_code == 400

    r = _upload(client, farmer, b"definitely not an image")
    assert r.status_code == 400
    assert r.json()["message"].startswith("Invalid image file")


def test_image_access_rules(client, db, admin, farmer, leaf_png):
    image_id = _upload(client, farmer, leaf_png, predict="false").json()["data"]["id"]
    other = make_user(db, Role.FARMER, email="other@example.com")

    assert client.get(f"/api/v1/image/{image_id}", headers=auth_header(farmer)).status_code == 200
    assert client.get(f"/api/v1/image/{image_id}", headers=auth_header(admin)).status_code == 200
    r = client.get(f"/api/v1/image/{image_id}", headers=auth_header(other))
    assert r.status_code == 403
    assert client.get("/api/v1/image/missing", headers=auth_header(admin)).status_code == 404


def test_listing_and_stats(client, db, admin, farmer, leaf_png):
    _upload(client, farmer, leaf_png, name="a.png", predict="false")
    _upload(client, admin, leaf_png, name="b.png", predict="false")

    r = client.get("/api/v1/image/my-images", headers=auth_header(farmer))
    assert [i["original_name"] for i in r.json()["data"]] == ["a.png"]

    assert client.get("/api/v1/image/", headers=auth_header(farmer)).status_code == 403
    r = client.get("/api/v1/image/", params={"sort_by": "original_name", "sort_order": "asc"},
                   headers=auth_header(admin))
    assert [i["original_name"] for i in r.json()["data"]] == ["a.png", "b.png"]
    assert r.json()["meta"]["total"] == 2

    farmer_stats = client.get("/api/v1/image/stats", headers=auth_header(farmer)).json()["data"]
    admin_stats = client.get("/api/v1/image/stats", headers=auth_header(admin)).json()["data"]
    assert farmer_stats["total_images"] == 1
    assert admin_stats["total_images"] == 2
    assert admin_stats["total_size"] == 2 * len(leaf_png)
    assert admin_stats["processing_stats"] == [{"processing_status": "COMPLETED", "count": 2}]


def test_serve_and_download_redirects(client, farmer, leaf_png):
    data = _upload(client, farmer, leaf_png, predict="false").json()["data"]
    headers = auth_header(farmer)

    r = client.get(f"/api/v1/image/{data['id']}/serve/thumbnail", headers=headers, follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == data["thumbnail_path"]
    assert r.headers["cache-control"] == "public, max-age=31536000"

    r = client.get(f"/api/v1/image/{data['id']}/download/thumbnail", headers=headers, follow_redirects=False)
    assert r.status_code == 307
    assert "/upload/fl_attachment:thumb_leaf/" in r.headers["location"]

    r = client.get(f"/api/v1/image/{data['id']}/serve/huge", headers=headers, follow_redirects=False)
    assert r.status_code == 400


def test_reprocess_rebuilds_variants(client, db, storage, admin, farmer, leaf_png):
    data = _upload(client, farmer, leaf_png, predict="false").json()["data"]

    r = client.post(f"/api/v1/image/{data['id']}/reprocess", headers=auth_header(admin))
    assert r.status_code == 200
    fresh = r.json()["data"]
    assert fresh["processing_status"] == "COMPLETED"
    assert fresh["processed_path"] != data["processed_path"]
    assert fresh["path"] == data["path"]
    assert len(storage.assets) == 3


def test_reprocess_failure_marks_image(client, db, storage, admin, farmer, leaf_png):
    data = _upload(client, farmer, leaf_png, predict="false").json()["data"]
    storage.assets.pop(public_id_from_url(data["path"]))
    r = client.post(f"/api/v1/image/{data['id']}/reprocess", headers=auth_header(admin))
    assert r.status_code == 500
    image = db.get(Image, data["id"])
    assert image.processing_status == ProcessingStatus.FAILED
    assert image.processing_error == "Failed to download stored image"


def test_delete_image(client, db, storage, catalog, farmer, leaf_png):
    image_id = _upload(client, farmer, leaf_png).json()["data"]["id"]
    other = make_user(db, Role.FARMER, email="other@example.com")
    assert client.delete(f"/api/v1/image/{image_id}", headers=auth_header(other)).status_code == 403

    r = client.delete(f"/api/v1/image/{image_id}", headers=auth_header(farmer))
    assert r.status_code == 200
    assert storage.assets == {}
    assert db.query(Image).count() == 0
    assert db.query(Prediction).count() == 0
    assert db.query(DiseaseHistory).count() == 0


def test_bulk_delete_only_own_images(client, db, admin, farmer, leaf_png):
    mine = _upload(client, farmer, leaf_png, predict="false").json()["data"]["id"]
    theirs = _upload(client, admin, leaf_png, predict="false").json()["data"]["id"]

    r = client.request("DELETE", "/api/v1/image/", json={"image_ids": [mine, theirs, "missing"]},
                       headers=auth_header(farmer))
    assert r.status_code == 200
    assert r.json()["data"] == {"deleted_count": 1, "requested": 3}
    assert db.get(Image, theirs) is not None

    r = client.request("DELETE", "/api/v1/image/", json={"image_ids": ["missing"]}, headers=auth_header(admin))
    assert r.status_code == 404


def test_upload_rejects_oversized_dimensions(client, db, storage, farmer, leaf_png, monkeypatch):
    # 800x600 is over twice this pixel limit, so Pillow refuses to decode it
    monkeypatch.setattr(PILImage, "MAX_IMAGE_PIXELS", 100_000)
    r = _upload(client, farmer, leaf_png, predict="false")
    assert r.status_code == 400
    assert r.json()["message"].startswith("Invalid image file")
    assert storage.assets == {}
    assert db.query(Image).count() == 0


def test_upload_survives_malformed_ml_body(client, db, storage, farmer, leaf_png):
    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "healthy", "model_loaded": True})
        return httpx.Response(200, json=["Tomato___Late_blight", 0.9])

    ml = MLClient(base_url="http://ml.test", timeout_ms=1000, transport=httpx.MockTransport(handler))
    app.dependency_overrides[get_ml_client] = lambda: ml

    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["prediction"] is None
    assert data["prediction_error"] == "Failed to get disease prediction"
    assert db.query(Image).count() == 1
    assert len(storage.assets) == 3


def test_upload_survives_unexpected_ml_exception(client, db, ml_client, farmer, leaf_png):
    ml_client.error = RuntimeError("socket closed mid-read")
    r = _upload(client, farmer, leaf_png)
    assert r.status_code == 201
    assert r.json()["data"]["prediction_error"] == "Failed to get disease prediction"
    assert db.query(Prediction).count() == 0

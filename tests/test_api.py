"""
API Tests for the Sessions Router

Drives the FastAPI app end to end with a fresh in-memory registry per test.
"""

import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import png_bytes, square_pixels
from config.models import EngineSettings
from main import app
from services import SessionRegistry, get_registry


@pytest.fixture
def client():
    registry = SessionRegistry(EngineSettings())
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def session_id(client):
    return client.post("/api/sessions").json()["id"]


def upload(client, session_id, role, pixels):
    files = {"file": (f"{role}.png", png_bytes(pixels), "image/png")}
    return client.post(f"/api/sessions/{session_id}/images/{role}", files=files)


@pytest.fixture
def loaded_id(client, session_id):
    upload(client, session_id, "reference", square_pixels())
    upload(client, session_id, "drawing", square_pixels(left=20, right=40))
    return session_id


def face_points(spread):
    points = [[0.5, 0.5]] * 264
    points[33] = [0.5 - spread, 0.4]
    points[263] = [0.5 + spread, 0.4]
    return points


class TestHealthAndLifecycle:

    def test_health_when_called_then_counts_sessions(self, client, session_id):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "active_sessions": 1}

    def test_create_when_posted_then_empty_session(self, client):
        response = client.post("/api/sessions")
        assert response.status_code == 201
        body = response.json()
        assert body["has_reference"] is False
        assert body["view_mode"] == "normal"
        assert body["transform"] == {"scale": 1.0, "offset_x": 0.0, "offset_y": 0.0}

    def test_get_when_unknown_then_404(self, client):
        assert client.get("/api/sessions/missing").status_code == 404
        assert client.get("/api/sessions/missing/score").status_code == 404

    def test_delete_when_existing_then_gone(self, client, session_id):
        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404


class TestImages:

    def test_upload_when_png_then_dimensions_reported(self, client, session_id):
        response = upload(client, session_id, "reference", square_pixels())
        assert response.status_code == 200
        assert response.json() == {"role": "reference", "width": 100, "height": 100}
        assert client.get(f"/api/sessions/{session_id}").json()["has_reference"] is True

    def test_upload_when_bytes_invalid_then_400(self, client, session_id):
        files = {"file": ("broken.png", b"not an image", "image/png")}
        response = client.post(f"/api/sessions/{session_id}/images/drawing", files=files)
        assert response.status_code == 400

    def test_upload_when_role_unknown_then_422(self, client, session_id):
        assert upload(client, session_id, "sketch", square_pixels()).status_code == 422

    def test_outline_when_uploaded_then_rgba_png(self, client, loaded_id):
        response = client.get(f"/api/sessions/{loaded_id}/outline/reference")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        image = Image.open(io.BytesIO(response.content))
        assert image.size == (100, 100)
        assert image.mode == "RGBA"

    def test_outline_when_simplified_then_png(self, client, loaded_id):
        response = client.get(f"/api/sessions/{loaded_id}/outline/drawing", params={"simplified": True})
        assert response.status_code == 200

    def test_outline_when_image_missing_then_404(self, client, session_id):
        assert client.get(f"/api/sessions/{session_id}/outline/drawing").status_code == 404

    def test_posterize_and_negative_space_when_uploaded_then_png(self, client, loaded_id):
        assert client.get(f"/api/sessions/{loaded_id}/posterize/reference").status_code == 200
        assert client.get(f"/api/sessions/{loaded_id}/negative-space/drawing").status_code == 200


class TestAlignment:

    def test_align_when_content_differs_then_content_bounds(self, client, loaded_id):
        response = client.post(f"/api/sessions/{loaded_id}/align")
        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "content_bounds"
        assert body["success"] is True
        assert body["scale"] == pytest.approx(2.0)

    def test_align_when_drawing_missing_then_400(self, client, session_id):
        upload(client, session_id, "reference", square_pixels())
        assert client.post(f"/api/sessions/{session_id}/align").status_code == 400

    def test_transform_endpoints_when_called_then_state_updated(self, client, loaded_id):
        nudged = client.post(f"/api/sessions/{loaded_id}/transform/nudge", json={"dx": 4, "dy": -3}).json()
        assert (nudged["offset_x"], nudged["offset_y"]) == (4, -3)

        scaled = client.post(f"/api/sessions/{loaded_id}/transform/scale", json={"factor": 2.0}).json()
        assert scaled["scale"] == pytest.approx(2.0)

        reset = client.post(f"/api/sessions/{loaded_id}/transform/reset").json()
        assert reset == {"scale": 1.0, "offset_x": 0.0, "offset_y": 0.0}

    def test_scale_when_factor_not_positive_then_422(self, client, loaded_id):
        response = client.post(f"/api/sessions/{loaded_id}/transform/scale", json={"factor": 0})
        assert response.status_code == 422

    def test_detect_when_no_detector_then_501(self, client, loaded_id):
        assert client.post(f"/api/sessions/{loaded_id}/landmarks/detect").status_code == 501


class TestViewAndScores:

    def test_view_mode_when_set_then_render_reflects_it(self, client, loaded_id):
        response = client.put(f"/api/sessions/{loaded_id}/view-mode", json={"mode": "both-outlines"})
        assert response.json()["view_mode"] == "both-outlines"

        client.put(f"/api/sessions/{loaded_id}/assist", json={"enabled": True})
        plan = client.get(f"/api/sessions/{loaded_id}/render").json()
        assert plan["mode"] == "both-outlines"
        assert [layer["kind"] for layer in plan["layers"]] == ["outline", "outline"]
        assert plan["score"] is not None

    def test_view_mode_when_unknown_then_422(self, client, loaded_id):
        assert client.put(f"/api/sessions/{loaded_id}/view-mode", json={"mode": "xray"}).status_code == 422

    def test_score_when_aligned_then_higher_than_before(self, client, loaded_id):
        before = client.get(f"/api/sessions/{loaded_id}/score").json()
        client.post(f"/api/sessions/{loaded_id}/align")
        after = client.get(f"/api/sessions/{loaded_id}/score").json()
        assert 0.0 <= before["score"] < after["score"] <= 1.0

    def test_difference_when_both_images_then_stats_and_heatmap(self, client, loaded_id):
        stats = client.get(f"/api/sessions/{loaded_id}/difference").json()
        assert stats["width"] == 768 and stats["height"] == 768
        assert 0.0 < stats["average_difference_percent"] <= 100.0

        heatmap = client.get(f"/api/sessions/{loaded_id}/difference/heatmap")
        assert heatmap.status_code == 200
        assert Image.open(io.BytesIO(heatmap.content)).size == (768, 768)

    def test_difference_when_drawing_missing_then_400(self, client, session_id):
        upload(client, session_id, "reference", square_pixels())
        assert client.get(f"/api/sessions/{session_id}/difference").status_code == 400


class TestLandmarksAndCritique:

    def test_landmarks_when_posted_then_critique_reports_segments(self, client, loaded_id):
        for role, spread in (("reference", 0.2), ("drawing", 0.1)):
            response = client.post(
                f"/api/sessions/{loaded_id}/landmarks",
                json={"kind": "face", "role": role, "points": face_points(spread)}
            )
            assert response.status_code == 200
        assert client.get(f"/api/sessions/{loaded_id}").json()["landmarks"]["face"] is True

        critique = client.get(f"/api/sessions/{loaded_id}/critique", params={"kind": "face"}).json()
        eye_span = critique["segments"][0]
        assert (eye_span["a"], eye_span["b"]) == (33, 263)
        assert eye_span["diff_percent"] == pytest.approx(-50.0)
        assert eye_span["rating"] == "poor"
        assert eye_span["tilt_degrees"] == pytest.approx(0.0)
        assert critique["centroid_offset"] == pytest.approx([0.0, 0.0])
        assert critique["anchor_scale_ratio"] == pytest.approx(0.5)

    def test_landmarks_when_image_missing_then_400(self, client, session_id):
        response = client.post(
            f"/api/sessions/{session_id}/landmarks",
            json={"kind": "face", "role": "drawing", "points": [[0.5, 0.5]]}
        )
        assert response.status_code == 400

    def test_landmarks_when_not_normalized_then_422(self, client, loaded_id):
        response = client.post(
            f"/api/sessions/{loaded_id}/landmarks",
            json={"kind": "pose", "role": "reference", "points": [[40.0, 12.0]]}
        )
        assert response.status_code == 422

    def test_critique_when_kind_unknown_then_422(self, client, loaded_id):
        assert client.get(f"/api/sessions/{loaded_id}/critique", params={"kind": "hands"}).status_code == 422


class TestBaseUnitAnchor:

    def test_anchor_when_set_then_render_carries_anchor_and_key_points(self, client, loaded_id):
        response = client.put(
            f"/api/sessions/{loaded_id}/base-unit-anchor",
            json={"reference": [300, 200], "drawing": [400, 300]}
        )
        assert response.status_code == 200
        assert response.json()["drawing"] == pytest.approx([400.0, 300.0])

        client.put(f"/api/sessions/{loaded_id}/view-mode", json={"mode": "base-unit-outline"})
        client.post(f"/api/sessions/{loaded_id}/transform/nudge", json={"dx": 10, "dy": 5})
        plan = client.get(f"/api/sessions/{loaded_id}/render").json()
        assert plan["anchor"]["reference"] == pytest.approx([300.0, 200.0])
        assert plan["anchor"]["drawing"] == pytest.approx([410.0, 305.0])
        assert len(plan["key_points"]) == 9
        assert client.get(f"/api/sessions/{loaded_id}").json()["has_base_unit_anchor"] is True

    def test_anchor_when_deleted_then_render_has_none(self, client, loaded_id):
        client.put(
            f"/api/sessions/{loaded_id}/base-unit-anchor",
            json={"reference": [300, 200], "drawing": [400, 300]}
        )
        response = client.delete(f"/api/sessions/{loaded_id}/base-unit-anchor")
        assert response.json()["has_base_unit_anchor"] is False

        assert client.get(f"/api/sessions/{loaded_id}/base-unit-anchor").json() == {"reference": None, "drawing": None}
        client.put(f"/api/sessions/{loaded_id}/view-mode", json={"mode": "base-unit-outline"})
        plan = client.get(f"/api/sessions/{loaded_id}/render").json()
        assert plan["anchor"] is None
        assert plan["key_points"] == []

    def test_anchor_when_drawing_missing_then_400(self, client, session_id):
        upload(client, session_id, "reference", square_pixels())
        response = client.put(
            f"/api/sessions/{session_id}/base-unit-anchor",
            json={"reference": [300, 200], "drawing": [400, 300]}
        )
        assert response.status_code == 400

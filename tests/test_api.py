"""Tests for the HTTP service."""
import io
import json
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from rawwb.color_science import SRGB_TO_XYZ
from rawwb import main
from rawwb.main import app
from rawwb.schemas import JobStatus


def png_bytes(rgb=(200, 160, 120), size=48):
    image = Image.new("RGB", (size, size), tuple(rgb))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


def wait_for_job(client, job_id, timeout=20.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get(f"/status/{job_id}").json()
        if status["status"] != "processing":
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish in {timeout}s")


class TestInfoEndpoints:
    """Test health and reference endpoints."""

    def test_health(self, client):
        """Health reports healthy."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_illuminants(self, client):
        """All standard illuminants are listed with their CCT."""
        response = client.get("/illuminants")
        names = {item["name"]: item for item in response.json()}
        assert set(names) == {"A", "D50", "D55", "D65", "D75", "E"}
        assert abs(names["D65"]["kelvin"] - 6504) < 30


class TestTemperatureEndpoints:
    """Test CCT and Duv endpoints."""

    def test_from_xy(self, client):
        """D65 is about 6500 K and slightly green."""
        response = client.post("/temperature/xy", json={"x": 0.31271, "y": 0.32902})
        body = response.json()
        assert response.status_code == 200
        assert abs(body["kelvin"] - 6504) < 30
        assert body["duv"] > 0
        assert body["tint"] < 0

    def test_from_cct(self, client):
        """A positive Duv reads back as green."""
        response = client.post("/temperature/cct", json={"kelvin": 4500, "duv": 0.01})
        body = response.json()
        assert response.status_code == 200
        assert abs(body["duv"] - 0.01) < 5e-4
        assert body["tint"] == pytest.approx(-10.0, abs=0.5)

    def test_missing_field(self, client):
        """Request validation rejects incomplete bodies."""
        response = client.post("/temperature/cct", json={"duv": 0.01})
        assert response.status_code == 422


class TestWhitePointEndpoint:
    """Test the camera metadata endpoint."""

    def test_estimate(self, client):
        """Realistic metadata gives a plausible scene white."""
        response = client.post("/white-point", json={
            "multipliers": [2.0, 1.0, 1.5, 1.0],
            "camera_to_xyz": SRGB_TO_XYZ.T.tolist(),
        })
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "estimated"
        assert 2500 <= body["scene"]["kelvin"] <= 7500
        assert body["delta_kelvin"] == pytest.approx(
            body["target"]["kelvin"] - body["scene"]["kelvin"], abs=0.2
        )

    def test_built_from_report(self, client, monkeypatch):
        """Scene and target come from the report without re-estimating."""
        def unexpected(xy):
            raise AssertionError("temperature re-estimated")

        monkeypatch.setattr(main, "estimate_temperature", unexpected)
        response = client.post("/white-point", json={
            "multipliers": [2.0, 1.0, 1.5, 1.0],
            "camera_to_xyz": SRGB_TO_XYZ.T.tolist(),
        })
        body = response.json()
        assert response.status_code == 200
        assert body["delta_tint"] == pytest.approx(body["target"]["tint"] - body["scene"]["tint"], abs=1e-6)

    def test_no_calibration(self, client):
        """A missing matrix is reported, not rejected."""
        response = client.post("/white-point", json={"multipliers": [2.0, 1.0, 1.5, 1.0]})
        assert response.status_code == 200
        assert response.json()["status"] == "no_calibration"

    def test_bad_matrix(self, client):
        """A malformed matrix is a client error."""
        response = client.post("/white-point", json={
            "multipliers": [2.0, 1.0, 1.5, 1.0],
            "camera_to_xyz": [[1, 0], [0, 1]],
        })
        assert response.status_code == 400

    def test_unknown_illuminant(self, client):
        """An unknown target illuminant is a client error."""
        response = client.post("/white-point", json={
            "multipliers": [1.0, 1.0, 1.0, 1.0],
            "target_illuminant": "F7",
        })
        assert response.status_code == 400


class TestGainsEndpoint:
    """Test pixel based gain estimation."""

    def test_gray_world(self, client):
        """A uniform warm upload is neutralized by gray-world."""
        response = client.post(
            "/gains",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"algorithm": "gray_world"},
        )
        body = response.json()
        assert response.status_code == 200
        assert body["gains"]["green"] == 1.0
        assert body["gains"]["red"] < 1.0
        assert body["gains"]["blue"] > 1.0
        assert body["illuminant"]["kelvin"] < 5000

    def test_invalid_format(self, client):
        """Non-image uploads are rejected."""
        response = client.post(
            "/gains",
            files={"image": ("notes.txt", b"just some text", "text/plain")},
        )
        assert response.status_code == 400

    def test_unknown_algorithm(self, client):
        """Unknown algorithm names are rejected."""
        response = client.post(
            "/gains",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"algorithm": "retinex"},
        )
        assert response.status_code == 400

    def test_opencv_algorithm(self, client):
        """The OpenCV estimators are selectable by name."""
        response = client.post(
            "/gains",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"algorithm": "gray_world_opencv"},
        )
        assert response.status_code == 200
        assert response.json()["algorithm"] == "gray_world_opencv"


class TestBalanceEndpoint:
    """Test the asynchronous balance job."""

    def test_camera_balance(self, client):
        """A camera balance job completes with a PNG result."""
        response = client.post(
            "/balance",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={
                "multipliers": json.dumps([2.0, 1.0, 1.5, 1.0]),
                "camera_to_xyz": json.dumps(SRGB_TO_XYZ.T.tolist()),
            },
        )
        assert response.status_code == 200
        status = wait_for_job(client, response.json()["job_id"])
        assert status["status"] == "completed"
        result = status["result"]
        assert result["method"] == "adaptation"
        assert result["status"] == "estimated"
        assert result["image"].startswith("data:image/png;base64,")
        assert abs(result["target"]["kelvin"] - 6504) < 30

    def test_auto_gains_to_kelvin(self, client):
        """Auto gains toward a kelvin target report the gains used."""
        response = client.post(
            "/balance",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"source": "auto", "method": "gains", "target_kelvin": "5000", "target_tint": "0"},
        )
        status = wait_for_job(client, response.json()["job_id"])
        assert status["status"] == "completed"
        assert status["result"]["gains"] is not None
        assert status["result"]["status"] == "pixel_estimate"

    def test_invalid_method(self, client):
        """Unknown correction methods are rejected before a job starts."""
        response = client.post(
            "/balance",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"method": "magic"},
        )
        assert response.status_code == 400

    def test_invalid_json(self, client):
        """Malformed metadata JSON is rejected."""
        response = client.post(
            "/balance",
            files={"image": ("warm.png", png_bytes(), "image/png")},
            data={"multipliers": "[2.0, 1.0"},
        )
        assert response.status_code == 400

    def test_unknown_job(self, client):
        """Unknown job ids are 404."""
        assert client.get("/status/does-not-exist").status_code == 404


class TestJobRetention:
    """Test expiry of finished jobs."""

    def test_recent_job_kept(self, client):
        """A job that just finished can still be polled."""
        main._jobs["recent"] = JobStatus(status="completed")
        main._job_finished_at["recent"] = 1000.0
        assert main.prune_finished_jobs(1000.0 + 60.0) == 0
        assert client.get("/status/recent").status_code == 200

    def test_expired_job_dropped(self, client):
        """Jobs finished longer ago than the retention window are removed."""
        main._jobs["expired"] = JobStatus(status="failed", error="boom")
        main._job_finished_at["expired"] = 1000.0
        assert main.prune_finished_jobs(1000.0 + main.JOB_RETENTION_SECONDS + 1.0) >= 1
        assert client.get("/status/expired").status_code == 404

    def test_running_job_kept(self, client):
        """Jobs still processing are never pruned."""
        main._jobs["running"] = JobStatus(status="processing")
        main.prune_finished_jobs(1e12)
        assert client.get("/status/running").status_code == 200

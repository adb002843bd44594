"""
API tests for the recommendation router.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fertisense.database import Base
from fertisense.main import create_app
from fertisense.routers.recommendation import get_engine, get_session_store
from fertisense.services.price_catalog import StaticPriceCatalogAdapter
from fertisense.services.recommendation_engine import RecommendationEngine
from fertisense.services.session_store import SessionStore, SqlAlchemyKeyValueStore

FARMER_ID = "64b7f0c2a1d3e4f5a6b7c8d9"


def reading_body(n=250, p=50, k=400, ph=6.2, ok=True, count=10, **extra):
    body = {
        "farmer_identity": FARMER_ID,
        "samples": [{"n": n, "p": p, "k": k, "ph": ph, "ok": ok} for _ in range(count)],
        "selection": {"variety": "HYBRID", "soil_class": "LIGHT", "season": "WET"},
        "area_ha": 1.0,
        "captured_at": "2026-10-18T10:00:10+00:00",
    }
    body.update(extra)
    return body


@pytest.fixture
def client(flat_catalog):
    db_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=db_engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    engine = RecommendationEngine(price_adapter=StaticPriceCatalogAdapter(flat_catalog))
    store = SessionStore(kv_store=SqlAlchemyKeyValueStore(session_factory))

    app = create_app(create_tables=False)
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_session_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestCreateRecommendation:

    def test_scenario_a(self, client):
        response = client.post("/api/recommendations", json=reading_body())
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert data["nutrient_class"] == "HLH"
        assert data["levels"] == {"N": "HIGH", "P": "LOW", "K": "HIGH"}
        assert [p["id"] for p in data["plans"]] == [
            "ALT_DAP_MOP_UREA",
            "ALT_16_20_0_MOP_AMMOSUL",
            "ALT_14_14_14_UREA",
        ]
        assert data["plans"][0]["isCheapest"] is True
        assert data["plans"][0]["cost"]["total"] == 5190.0
        assert data["selected_plan_id"] == "ALT_DAP_MOP_UREA"
        assert data["sync_state"] == "SAVED"
        assert data["remote_synced"] is False
        assert data["reading"]["nitrogenPpm"] == 250.0

    def test_repeat_submission_reuses_session(self, client):
        first = client.post("/api/recommendations", json=reading_body()).json()
        second = client.post("/api/recommendations", json=reading_body()).json()
        assert first["session_key"] == second["session_key"]

        history = client.get(f"/api/recommendations/{FARMER_ID}/history").json()
        assert history["total"] == 1

    def test_all_zero_reading(self, client):
        response = client.post("/api/recommendations", json=reading_body(n=0, p=0, k=0))
        assert response.status_code == 422

    def test_all_samples_rejected(self, client):
        response = client.post("/api/recommendations", json=reading_body(ok=False))
        assert response.status_code == 422

    def test_invalid_area(self, client):
        response = client.post("/api/recommendations", json=reading_body(area_ha=0))
        assert response.status_code == 422

    def test_no_samples(self, client):
        response = client.post("/api/recommendations", json=reading_body(count=0))
        assert response.status_code == 422

    def test_partial_session(self, client):
        body = reading_body(count=6)
        response = client.post("/api/recommendations", json=body)
        assert response.status_code == 200
        assert any("6 complete samples" in w for w in response.json()["warnings"])

    def test_irri_rule_set(self, client):
        response = client.post("/api/recommendations", json=reading_body(rule_set="IRRI_RICE_V1"))
        assert response.status_code == 200
        assert response.json()["rule_set_id"] == "IRRI_RICE_V1"

    def test_new_area_is_a_new_session(self, client):
        first = client.post("/api/recommendations", json=reading_body()).json()
        second = client.post("/api/recommendations", json=reading_body(area_ha=2.0)).json()

        assert second["session_key"] != first["session_key"]
        plan = next(p for p in second["plans"] if p["id"] == "ALT_DAP_MOP_UREA")
        basal = plan["schedule"]["basal"]
        assert {"code": "18-46-0", "bags": 5.22} in basal

        history = client.get(f"/api/recommendations/{FARMER_ID}/history").json()
        assert history["total"] == 2

    def test_new_rule_set_is_a_new_session(self, client):
        first = client.post("/api/recommendations", json=reading_body()).json()
        second = client.post("/api/recommendations", json=reading_body(rule_set="IRRI_RICE_V1")).json()

        assert second["session_key"] != first["session_key"]
        assert second["rule_set_id"] == "IRRI_RICE_V1"

    def test_rejected_samples_do_not_start_a_session(self, client):
        client.post("/api/recommendations", json=reading_body())
        response = client.post("/api/recommendations", json=reading_body(ok=False))

        assert response.status_code == 422
        assert "usable" in response.json()["detail"]
        history = client.get(f"/api/recommendations/{FARMER_ID}/history").json()
        assert history["total"] == 1


class TestSessionEndpoints:

    def test_select_plan(self, client):
        client.post("/api/recommendations", json=reading_body())

        response = client.post(
            f"/api/recommendations/{FARMER_ID}/select",
            json={"plan_id": "ALT_14_14_14_UREA"},
        )

        assert response.status_code == 200
        assert response.json()["selected_plan_id"] == "ALT_14_14_14_UREA"

    def test_select_unknown_plan(self, client):
        client.post("/api/recommendations", json=reading_body())
        response = client.post(f"/api/recommendations/{FARMER_ID}/select", json={"plan_id": "NOPE"})
        assert response.status_code == 404

    def test_select_without_session(self, client):
        response = client.post("/api/recommendations/nobody/select", json={"plan_id": "ALT_DAP_MOP_UREA"})
        assert response.status_code == 404

    def test_report_follows_selection(self, client):
        client.post("/api/recommendations", json=reading_body())
        client.post(f"/api/recommendations/{FARMER_ID}/select", json={"plan_id": "ALT_16_20_0_MOP_AMMOSUL"})

        report = client.get(f"/api/recommendations/{FARMER_ID}/report").json()

        assert report["plan"]["id"] == "ALT_16_20_0_MOP_AMMOSUL"
        assert report["npkClass"] == "HLH"
        assert report["date"] == "2026-10-18"

    def test_report_for_explicit_plan(self, client):
        client.post("/api/recommendations", json=reading_body())
        report = client.get(
            f"/api/recommendations/{FARMER_ID}/report",
            params={"plan_id": "ALT_DAP_MOP_UREA"},
        ).json()
        assert report["plan"]["badges"] == ["Cheapest"]

    def test_report_without_session(self, client):
        assert client.get("/api/recommendations/nobody/report").status_code == 404

    def test_empty_history(self, client):
        history = client.get("/api/recommendations/nobody/history").json()
        assert history == {"farmer_identity": "nobody", "entries": [], "total": 0}


def test_grades(client):
    grades = client.get("/api/recommendations/grades").json()
    assert len(grades) == 7
    assert {"code": "UREA_46_0_0", "dash_code": "46-0-0"}.items() <= grades[0].items()

    without_organic = client.get("/api/recommendations/grades", params={"include_organic": "false"}).json()
    assert len(without_organic) == 6


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True

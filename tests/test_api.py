"""End-to-end tests for the AI dashboard API."""

from datetime import date, timedelta

import httpx
import pytest

from conftest import NOW, FailingStore
from emr_risk.api.dependencies import get_dashboard_service
from emr_risk.api.main import app
from emr_risk.core.scoring import PatientRef, RiskAssessment, RiskLevel, UrgencyLevel
from emr_risk.services.dashboard_service import DashboardService
from emr_risk.services.orchestrator import AssessmentOrchestrator
from emr_risk.services.patient_directory import StaticPatientDirectory

NOW_ISO = "2025-10-19T09:00:00"


@pytest.fixture
def directory():
    return StaticPatientDirectory([
        PatientRef("P1", "HN001", "Somchai", "Jaidee", "สมชาย ใจดี", "male", date(1955, 3, 1)),
        PatientRef("P2", "HN002", "Malee", "Sukjai", "มาลี สุขใจ", "female", date(1975, 7, 15)),
        PatientRef("P3", "HN003", "Anan", "Wongsa", None, "male", date(1997, 1, 20)),
    ])


@pytest.fixture
def service(directory, store, orchestrator, settings, clock):
    return DashboardService(directory, store, orchestrator, settings=settings, clock=clock)


@pytest.fixture
async def client(service):
    app.dependency_overrides[get_dashboard_service] = lambda: service
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(store):
    """P1 very high and overdue, P2 moderate, P3 never assessed."""
    await store.put("P1", RiskAssessment(
        patient_id="P1",
        risk_score=85,
        risk_level=RiskLevel.VERY_HIGH,
        urgency_level=UrgencyLevel.IMMEDIATE,
        contributing_factors=("Age 65 or older",),
        recommendations=("Very high risk: consult a physician immediately",),
        next_screening_date=NOW - timedelta(days=10),
        assessed_at=NOW - timedelta(days=100),
        assessed_from_version="diabetes-v1",
    ))
    await store.put("P2", RiskAssessment(
        patient_id="P2",
        risk_score=30,
        risk_level=RiskLevel.MODERATE,
        urgency_level=UrgencyLevel.ROUTINE,
        contributing_factors=("Age 45-64", "Family history of diabetes"),
        recommendations=("Moderate risk: lifestyle modification advised",),
        next_screening_date=NOW + timedelta(days=300),
        assessed_at=NOW - timedelta(days=2),
        assessed_from_version="diabetes-v1",
    ))
    return store


async def test_overview_three_patient_scenario(client, seeded, provider):
    response = await client.get("/ai-dashboard/overview")

    assert response.status_code == 200
    body = response.json()
    assert body["overview"]["totalPatients"] == 3
    assert body["overview"]["riskStats"] == {
        "low": 0, "moderate": 1, "high": 0, "very_high": 1, "no_data": 1,
    }
    assert body["overview"]["highRiskCount"] == 1
    assert body["overview"]["lastUpdated"].startswith(NOW_ISO)
    assert body["summary"] == {"averageRiskScore": 57.5, "needsFollowUp": 1, "urgentCases": 1}

    patients = {row["id"]: row for row in body["patients"]}
    assert patients["P3"]["diabetesRisk"] is None
    assert patients["P1"]["diabetesRisk"]["riskScore"] == 85
    assert patients["P1"]["diabetesRisk"]["riskLevel"] == "very_high"
    assert patients["P2"]["demographics"] == {
        "hospitalNumber": "HN002",
        "firstName": "Malee",
        "lastName": "Sukjai",
        "thaiName": "มาลี สุขใจ",
        "gender": "female",
        "dateOfBirth": "1975-07-15",
        "age": 50,
    }
    # Reading the overview never reassesses
    assert provider.total_calls == 0


async def test_assessment_json_shape(client, seeded):
    response = await client.get("/ai-dashboard/overview", params={"riskLevel": "moderate"})

    risk = response.json()["patients"][0]["diabetesRisk"]
    assert set(risk) == {
        "patientId", "riskScore", "riskLevel", "urgencyLevel", "contributingFactors",
        "recommendations", "nextScreeningDate", "assessedAt", "assessedFromVersion",
    }
    assert risk["contributingFactors"] == ["Age 45-64", "Family history of diabetes"]


async def test_forced_bulk_assess_updates_overview(client, seeded, provider):
    response = await client.post(
        "/ai-dashboard/bulk-assess",
        json={"patientIds": ["P1", "P2", "P3"], "forceReassess": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["outcomes"] == {"P1": "recomputed", "P2": "recomputed", "P3": "recomputed"}
    assert body["summary"] == {"total": 3, "recomputed": 3, "cached": 0, "failed": 0}
    assert body["failures"] == {}
    assert provider.total_calls == 3

    overview = (await client.get("/ai-dashboard/overview")).json()
    for row in overview["patients"]:
        assert row["diabetesRisk"]["assessedAt"].startswith(NOW_ISO)
    assert overview["overview"]["riskStats"]["no_data"] == 0


async def test_bulk_assess_serves_fresh_from_cache(client, seeded, provider):
    response = await client.post("/ai-dashboard/bulk-assess", json={"patientIds": ["P1", "P2", "P3"]})

    body = response.json()
    # P1 is overdue, P2 is fresh, P3 was never assessed
    assert body["outcomes"] == {"P1": "recomputed", "P2": "cached", "P3": "recomputed"}
    assert body["results"]["P2"]["riskScore"] == 30
    assert provider.calls["P2"] == 0


async def test_bulk_assess_reports_failures(client):
    response = await client.post(
        "/ai-dashboard/bulk-assess", json={"patientIds": ["P1", "P404"]}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["outcomes"] == {"P1": "recomputed", "P404": "failed"}
    assert body["failures"]["P404"]["code"] == "patient_not_found"
    assert "P404" not in body["results"]


async def test_bulk_assess_rejects_oversized_batch(client, settings):
    ids = [f"P{i}" for i in range(settings.bulk_max_patients + 1)]

    response = await client.post("/ai-dashboard/bulk-assess", json={"patientIds": ids})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_input"


async def test_bulk_assess_requires_patient_ids(client):
    response = await client.post("/ai-dashboard/bulk-assess", json={"forceReassess": True})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_input"


async def test_store_outage_maps_to_503(directory, orchestrator, settings, clock):
    service = DashboardService(directory, FailingStore(fail_reads=True), orchestrator,
                               settings=settings, clock=clock)
    app.dependency_overrides[get_dashboard_service] = lambda: service
    try:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as client:
            overview = await client.get("/ai-dashboard/overview")
            health = await client.get("/health")
    finally:
        app.dependency_overrides.clear()

    assert overview.status_code == 503
    assert overview.json()["error"]["code"] == "store_unavailable"
    assert health.status_code == 200
    assert health.json()["status"] == "unhealthy"


async def test_bulk_store_outage_maps_to_503(directory, provider, model, settings, clock):
    orchestrator = AssessmentOrchestrator(provider, FailingStore(), model, settings, clock)
    service = DashboardService(directory, orchestrator.store, orchestrator,
                               settings=settings, clock=clock)
    app.dependency_overrides[get_dashboard_service] = lambda: service
    try:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.post("/ai-dashboard/bulk-assess", json={"patientIds": ["P1"]})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json() == {
        "error": {"code": "store_unavailable", "message": "connection refused"}
    }


async def test_overview_filters_and_paginates(client, seeded):
    no_data = (await client.get("/ai-dashboard/overview", params={"riskLevel": "no_data"})).json()
    searched = (await client.get("/ai-dashboard/overview", params={"search": "somchai"})).json()
    paged = (await client.get("/ai-dashboard/overview", params={"limit": 1, "offset": 2})).json()

    assert [row["id"] for row in no_data["patients"]] == ["P3"]
    assert no_data["overview"]["totalPatients"] == 3
    assert no_data["overview"]["matchedPatients"] == 1
    assert [row["id"] for row in searched["patients"]] == ["P1"]
    assert [row["id"] for row in paged["patients"]] == ["P3"]


async def test_overview_rejects_unknown_risk_level(client):
    response = await client.get("/ai-dashboard/overview", params={"riskLevel": "extreme"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_input"


async def test_patient_detail_assesses_and_returns_history(client, seeded, provider):
    first = await client.get("/ai-dashboard/patients/P2/diabetes-risk")

    assert first.status_code == 200
    assert first.json()["diabetesRisk"]["riskScore"] == 30
    assert first.json()["history"] == []
    # Fresh assessment served without touching the EMR
    assert provider.calls["P2"] == 0

    forced = await client.get(
        "/ai-dashboard/patients/P2/diabetes-risk", params={"forceReassess": "true"}
    )

    assert provider.calls["P2"] == 1
    body = forced.json()
    assert body["diabetesRisk"]["assessedAt"].startswith(NOW_ISO)
    assert [entry["riskScore"] for entry in body["history"]] == [30]
    assert body["demographics"]["firstName"] == "Malee"


async def test_patient_detail_unknown_patient_is_404(client):
    response = await client.get("/ai-dashboard/patients/P404/diabetes-risk")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "patient_not_found"


async def test_analytics(client, seeded):
    await client.post("/ai-dashboard/bulk-assess", json={"patientIds": ["P1", "P2", "P3"], "forceReassess": True})

    response = await client.get("/ai-dashboard/analytics", params={"period": "7d"})

    assert response.status_code == 200
    body = response.json()
    assert body["period"] == "7d"
    # Three new assessments plus P2's two-day-old one; P1's 100-day-old one is outside
    assert body["summary"]["totalAssessments"] == 4
    assert body["riskTrends"][0]["day"] == "2025-10-19"
    assert body["riskTrends"][0]["total"] == 3
    assert set(body["genderStatistics"]) == {"female", "male"}


async def test_analytics_rejects_unknown_period(client):
    response = await client.get("/ai-dashboard/analytics", params={"period": "1y"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_input"


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["rulesetVersion"] == "diabetes-v1"

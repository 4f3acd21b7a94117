"""
Tests for API endpoints - activities, recommendations, health
"""
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from core.exceptions import NotFoundError, PublishError, ServiceUnavailableError
from main import app
from models import Recommendation
from routers.activities import get_event_publisher, get_user_validator

ACTIVITY = {
    "userId": "u1",
    "activityType": "RUNNING",
    "duration": 30,
    "caloriesBurned": 300,
    "startTime": "2024-01-01T10:00:00Z",
    "additionalMetrics": {"heartRate": 150, "distance": 5.0},
}


@pytest.fixture
def validator():
    v = MagicMock()
    v.validate_user.return_value = True
    return v


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def client(validator, publisher):
    app.dependency_overrides[get_user_validator] = lambda: validator
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestTrackActivity:
    """Test POST /activities"""

    def test_track_activity(self, client, publisher):
        response = client.post("/activities", json=ACTIVITY)

        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["userId"] == "u1"
        assert data["activityType"] == "RUNNING"
        assert data["caloriesBurned"] == 300
        assert data["additionalMetrics"] == {"heartRate": 150, "distance": 5.0}
        assert data["createdAt"]

        topic, message = publisher.publish.call_args.args
        assert topic == "recommendations.generate"
        assert message["id"] == data["id"]

    def test_invalid_user(self, client, validator, publisher):
        validator.validate_user.return_value = False

        response = client.post("/activities", json=ACTIVITY)

        assert response.status_code == 422
        assert "Invalid user ID" in response.json()["detail"]
        assert response.json()["errorCode"] == "VALIDATION_ERROR_USERID"
        assert response.json()["field"] == "userId"
        publisher.publish.assert_not_called()

    def test_unknown_user(self, client, validator):
        validator.validate_user.side_effect = NotFoundError("User", "u1")
        assert client.post("/activities", json=ACTIVITY).status_code == 404

    def test_user_service_down(self, client, validator):
        validator.validate_user.side_effect = ServiceUnavailableError()
        assert client.post("/activities", json=ACTIVITY).status_code == 503

    def test_broker_down_still_created(self, client, publisher):
        publisher.publish.side_effect = PublishError("broker down")

        response = client.post("/activities", json=ACTIVITY)

        assert response.status_code == 201
        assert client.get(f"/activities/{response.json()['id']}").status_code == 200

    @pytest.mark.parametrize("field,value", [
        ("duration", -1),
        ("caloriesBurned", -5),
        ("activityType", "SKYDIVING"),
        ("userId", ""),
    ])
    def test_invalid_input(self, client, field, value):
        response = client.post("/activities", json={**ACTIVITY, field: value})
        assert response.status_code == 422

    def test_lowercase_activity_type(self, client):
        response = client.post("/activities", json={**ACTIVITY, "activityType": "yoga"})
        assert response.status_code == 201
        assert response.json()["activityType"] == "YOGA"


class TestListActivities:
    """Test GET /activities and /activities/{id}"""

    def test_list_by_query_param(self, client):
        client.post("/activities", json=ACTIVITY)
        client.post("/activities", json={**ACTIVITY, "userId": "u2"})

        response = client.get("/activities", params={"userId": "u1"})

        assert response.status_code == 200
        assert [a["userId"] for a in response.json()] == ["u1"]

    def test_list_by_header(self, client):
        client.post("/activities", json=ACTIVITY)

        response = client.get("/activities", headers={"X-User-ID": "u1"})

        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_list_requires_user(self, client):
        assert client.get("/activities").status_code == 422

    def test_get_missing(self, client):
        assert client.get(f"/activities/{uuid4()}").status_code == 404

    def test_get_bad_id(self, client):
        assert client.get("/activities/not-a-uuid").status_code == 422


class TestRecommendations:
    """Test GET /recommendations"""

    def _store(self, db_session, activity_id, user_id="u1"):
        db_session.add(Recommendation(
            activity_id=activity_id,
            user_id=user_id,
            activity_type="RUNNING",
            recommendation_text="Overall:Good",
            improvements=["Area: Pace - Recommendation: Slow down"],
            suggestions=["Workout: Easy run - Nutrition: Water"],
            safety=["Hydrate"],
        ))
        db_session.commit()

    def test_by_activity(self, client, db_session):
        activity_id = uuid4()
        self._store(db_session, activity_id)

        response = client.get(f"/recommendations/activity/{activity_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["activityId"] == str(activity_id)
        assert data["recommendationText"] == "Overall:Good"
        assert data["safety"] == ["Hydrate"]

    def test_by_activity_not_generated_yet(self, client):
        assert client.get(f"/recommendations/activity/{uuid4()}").status_code == 404

    def test_by_user(self, client, db_session):
        self._store(db_session, uuid4())
        self._store(db_session, uuid4(), user_id="u2")

        response = client.get("/recommendations", params={"userId": "u1"})

        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_by_user_requires_user(self, client):
        assert client.get("/recommendations").status_code == 422


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_detailed_without_redis(self, client):
        data = client.get("/health/detailed").json()
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["redis"]["status"] == "unavailable"
        assert data["checks"]["broker"]["status"] == "healthy"
        assert data["status"] == "degraded"

    def test_ping(self, client):
        assert client.get("/ping").json() == {"pong": True}

    def test_request_id_echoed(self, client):
        response = client.get("/ping", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    def test_request_id_generated(self, client):
        assert client.get("/ping").headers["X-Request-ID"]

# =============================================================================
# Integration Tests: webhook listener
# =============================================================================
# The app is built once per module (Prometheus collectors are process-wide)
# and each test swaps in its own projector through dependency_overrides.
# =============================================================================

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace import TracerProvider

from apps.hero.app import create_app
from apps.hero.config import RunKey, Settings
from apps.hero.routers.webhook_router import HERO_WEBHOOK_EVENTS_TOTAL, get_projector, get_settings
from apps.hero.services.projector import RunProjector
from apps.hero.services.trace_identity import derive_trace_id, format_trace_id
from apps.hero.utils.github_client import GitHubClient, GitHubTransportError
from apps.hero.utils.otel import SeededIdGenerator, Telemetry
from conftest import FakeGitHub, make_job, run_payload, step_payload


@pytest.fixture(scope="module")
def app():
    id_generator = SeededIdGenerator()
    telemetry = Telemetry(provider=TracerProvider(id_generator=id_generator), id_generator=id_generator)
    return create_app(Settings(), telemetry=telemetry, client=GitHubClient(token="test"))


@pytest.fixture
def github():
    return FakeGitHub(
        jobs={
            42: [
                make_job(
                    1001,
                    [step_payload("Clone project", 1), step_payload("Run tests", 2, "failure")],
                    conclusion="failure",
                )
            ]
        },
        logs={1001: "2024-01-01T00:00:01Z Error: build failed\n"},
    )


@pytest.fixture
def client(app, github, builder, ledger):
    settings = Settings()
    settings.DEVEL = False

    projector = RunProjector(client=github, builder=builder, ledger=ledger)
    app.dependency_overrides[get_projector] = lambda: projector
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def delivery(action: str = "completed", **run_overrides):
    return {
        "action": action,
        "repository": {"name": "widgets", "full_name": "octo/widgets", "owner": {"login": "octo"}},
        "workflow_run": run_payload(42, **run_overrides),
        "sender": {"login": "hubot"},
    }


WORKFLOW_RUN = {"X-GitHub-Event": "workflow_run", "X-GitHub-Delivery": "d-1"}


class TestLiveness:
    def test_hello_world(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.text == "Hello world!"

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics_exposed(self, client):
        client.post("/webhook", json={}, headers={"X-GitHub-Event": "ping"})
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "hero_webhook_events_total" in response.text


class TestRejectedDeliveries:
    def test_missing_event_header_is_400(self, client):
        response = client.post("/webhook", json=delivery())
        assert response.status_code == 400

    def test_other_event_is_acknowledged_but_ignored(self, client, github):
        response = client.post("/webhook", json={"zen": "Keep it simple."}, headers={"X-GitHub-Event": "ping"})

        assert response.status_code == 202
        assert response.json() == {"status": "ignored", "reason": "event", "event": "ping"}
        assert github.calls == []

    def test_malformed_payload_is_422(self, client):
        response = client.post("/webhook", json={"action": "completed"}, headers=WORKFLOW_RUN)
        assert response.status_code == 422

    def test_non_json_body_is_422(self, client):
        response = client.post("/webhook", content=b"not json", headers=WORKFLOW_RUN)
        assert response.status_code == 422

    @pytest.mark.parametrize("action", ["requested", "in_progress"])
    def test_unfinished_action_is_204(self, client, github, action):
        response = client.post(
            "/webhook",
            json=delivery(action, status="in_progress", conclusion=None),
            headers=WORKFLOW_RUN,
        )

        assert response.status_code == 204
        assert response.content == b""
        assert github.calls == []


class TestCompletedRun:
    def test_projects_run(self, client, span_exporter, ledger):
        response = client.post("/webhook", json=delivery(), headers=WORKFLOW_RUN)

        key = RunKey(owner="octo", repository="widgets", workflow="check.yaml", run_id=42)
        assert response.status_code == 200
        assert response.json() == {
            "status": "projected",
            "run_id": 42,
            "trace_id": format_trace_id(derive_trace_id(key)),
        }
        assert len(span_exporter.get_finished_spans()) == 4
        assert ledger.has_submitted(key)

    def test_redelivery_is_skipped(self, client, span_exporter):
        client.post("/webhook", json=delivery(), headers=WORKFLOW_RUN)
        emitted = len(span_exporter.get_finished_spans())

        response = client.post("/webhook", json=delivery(), headers=WORKFLOW_RUN)

        assert response.status_code == 200
        assert response.json() == {"status": "skipped", "run_id": 42}
        assert len(span_exporter.get_finished_spans()) == emitted

    def test_workflow_key_strips_ref_suffix(self, client, ledger):
        payload = delivery(path=".github/workflows/check.yaml@refs/heads/main")
        client.post("/webhook", json=payload, headers=WORKFLOW_RUN)

        key = RunKey(owner="octo", repository="widgets", workflow="check.yaml", run_id=42)
        assert ledger.has_submitted(key)

    def test_github_failure_is_500(self, client, github, ledger):
        github.fail_jobs_for[42] = GitHubTransportError("connection reset")

        response = client.post("/webhook", json=delivery(), headers=WORKFLOW_RUN)

        key = RunKey(owner="octo", repository="widgets", workflow="check.yaml", run_id=42)
        assert response.status_code == 500
        assert "42" in response.json()["detail"]
        assert not ledger.has_submitted(key)

    def test_unusable_workflow_key_is_422(self, client, github):
        # no path: the key falls back to a run name that is not a file name
        payload = delivery(path="", name="build/test")

        response = client.post("/webhook", json=payload, headers=WORKFLOW_RUN)

        assert response.status_code == 422
        assert github.calls == []


class TestEventMetric:
    def test_event_label_is_a_closed_set(self, client):
        for i in range(25):
            client.post("/webhook", json={}, headers={"X-GitHub-Event": f"junk-{i}"})
        client.post("/webhook", json=delivery("requested"), headers=WORKFLOW_RUN)

        events = {
            sample.labels["event"]
            for metric in HERO_WEBHOOK_EVENTS_TOTAL.collect()
            for sample in metric.samples
        }
        assert events <= {"workflow_run", "other", "missing"}
        assert "other" in events

"""
HTTP surface: request binding and error-to-status mapping.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware import register_exception_handlers
from auth.dependencies import get_current_org_id
from config.settings import config
from connectors.routes import get_registry, get_repository, get_store, router

ORG = "org-1"


@pytest.fixture
def client(registry, store, repository):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1/integrations")
    app.dependency_overrides[get_current_org_id] = lambda: ORG
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_repository] = lambda: repository
    return TestClient(app)


class TestAuthorizationFlow:
    def test_list_providers(self, client):
        resp = client.get("/api/v1/integrations/providers")
        assert resp.status_code == 200
        assert [p["identifier"] for p in resp.json()] == ["fake"]

    def test_issue_then_connect(self, client):
        resp = client.get("/api/v1/integrations/social/fake")
        assert resp.status_code == 200
        assert resp.json() == {"url": "https://fake.example/authorize?state=state-1", "failed": False}

        resp = client.post(
            "/api/v1/integrations/social/fake/connect",
            json={"state": "state-1", "code": "abc", "timezone": 60},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["external_account_id"] == "acct-1"
        assert body["timezone"] == 60
        assert "access_token" not in body
        assert "refresh_token" not in body

    def test_unknown_provider_is_400(self, client):
        resp = client.get("/api/v1/integrations/social/nope")
        assert resp.status_code == 400
        assert resp.json() == {"msg": "Integration not allowed: nope"}

    def test_replayed_state_is_400(self, client):
        client.get("/api/v1/integrations/social/fake")
        payload = {"state": "state-1", "code": "abc"}
        assert client.post("/api/v1/integrations/social/fake/connect", json=payload).status_code == 200
        resp = client.post("/api/v1/integrations/social/fake/connect", json=payload)
        assert resp.status_code == 400
        assert resp.json() == {"msg": "Invalid state"}

    def test_refused_authorization_is_406(self, client, provider):
        provider.auth_result = "Missing scopes: repo"
        client.get("/api/v1/integrations/social/fake")
        resp = client.post(
            "/api/v1/integrations/social/fake/connect", json={"state": "state-1", "code": "abc"}
        )
        assert resp.status_code == 406
        assert resp.json() == {"msg": "Missing scopes: repo"}

    def test_trial_abuse_is_412(self, client, repository, monkeypatch):
        monkeypatch.setattr(config, "stripe_publishable_key", "pk_test")
        repository.trialing_orgs.add(ORG)
        repository.prior_connections.add((ORG, "acct-1"))
        client.get("/api/v1/integrations/social/fake")
        resp = client.post(
            "/api/v1/integrations/social/fake/connect", json={"state": "state-1", "code": "abc"}
        )
        assert resp.status_code == 412


class TestFunctions:
    def test_invoke(self, client, credential):
        resp = client.post(
            "/api/v1/integrations/function",
            json={"id": credential.id, "name": "echo", "data": {"x": 1}},
        )
        assert resp.status_code == 200
        assert resp.json() == {"token": "at-1", "data": {"x": 1}, "account": "acct-1"}

    def test_failed_invocation_returns_false(self, client, credential):
        resp = client.post(
            "/api/v1/integrations/function", json={"id": credential.id, "name": "explode"}
        )
        assert resp.status_code == 200
        assert resp.json() is False

    def test_unknown_credential_is_404(self, client):
        resp = client.post("/api/v1/integrations/function", json={"id": "nope", "name": "echo"})
        assert resp.status_code == 404

    def test_unknown_function_is_400(self, client, credential):
        resp = client.post(
            "/api/v1/integrations/function", json={"id": credential.id, "name": "missing"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"msg": "Function not found"}

    def test_mentions(self, client, provider, credential):
        provider.mention_result = [{"id": "bob", "label": "Bob"}]
        resp = client.post(
            "/api/v1/integrations/mentions",
            json={"id": credential.id, "name": "mention", "data": {"query": "b"}},
        )
        assert resp.status_code == 200
        assert resp.json() == [{"id": "bob", "label": "Bob"}]

    def test_nickname_unsupported(self, client, credential):
        resp = client.post(
            f"/api/v1/integrations/{credential.id}/nickname", json={"name": "New"}
        )
        assert resp.status_code == 400

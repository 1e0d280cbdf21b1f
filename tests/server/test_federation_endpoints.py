"""Tests for the federation REST endpoints."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from trafficplane.federation.handshake import INCOMING_PATH
from trafficplane.federation.models import NodeRole, Partner, RequestStatus
from trafficplane.federation.notify import SECRET_HEADER, join_url
from trafficplane.federation.service import set_federation_service

ORG = "acme"
OWN_URL = "https://own.example.com"
HQ_URL = "https://hq.example.com"
EDGE_URL = "https://edge-a.example.com"
SECRET = "a" * 64


@pytest.fixture
def federation_env(monkeypatch, tmp_path):
    """Set up federation-enabled environment."""
    token_file = tmp_path / "tokens.json"
    monkeypatch.setenv("TRAFFICPLANE_TOKEN_FILE", str(token_file))
    monkeypatch.setenv("TRAFFICPLANE_FEDERATION_ENABLED", "true")
    monkeypatch.setenv("TRAFFICPLANE_FEDERATION_ORG_ID", ORG)
    return {"token_file": token_file}


@pytest.fixture
def tokens(federation_env):
    """Bearer headers for an admin and a member of ORG, and an admin of another org."""
    from trafficplane.server.auth import get_token_store

    store = get_token_store(federation_env["token_file"])
    return {
        "admin": {"Authorization": f"Bearer {store.create('ops', ORG, 'ADMIN')}"},
        "member": {"Authorization": f"Bearer {store.create('viewer', ORG, 'MEMBER')}"},
        "other_org": {"Authorization": f"Bearer {store.create('intruder', 'globex', 'OWNER')}"},
    }


@pytest.fixture
def client(federation_env, service):
    from trafficplane.server.app import create_app

    set_federation_service(service)
    return TestClient(create_app())


@pytest.fixture
def configured(service):
    return service.identities.configure(ORG, node_name="own-node", node_url=OWN_URL)


def _incoming_body(**overrides):
    body = {
        "requesterNodeId": "node-a",
        "requesterNodeName": "edge-a",
        "requesterNodeUrl": EDGE_URL,
        "secretKey": SECRET,
    }
    body.update(overrides)
    return body


def _receive(client) -> str:
    response = client.post("/api/federation/requests/incoming", json=_incoming_body())
    assert response.status_code == 200
    return response.json()["requestId"]


# =============================================================================
# FEATURE GATE
# =============================================================================


class TestFeatureGate:
    def test_disabled_returns_404(self, monkeypatch, tmp_path):
        from trafficplane.server.app import create_app

        monkeypatch.setenv("TRAFFICPLANE_TOKEN_FILE", str(tmp_path / "tokens.json"))
        client = TestClient(create_app())

        response = client.post("/api/federation/requests/incoming", json=_incoming_body())

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "FEATURE_NOT_ENABLED"

    def test_admin_endpoint_disabled_before_auth(self, monkeypatch, tmp_path):
        from trafficplane.server.app import create_app

        monkeypatch.setenv("TRAFFICPLANE_TOKEN_FILE", str(tmp_path / "tokens.json"))
        response = TestClient(create_app()).get("/api/federation")
        assert response.status_code == 404


# =============================================================================
# NODE-TO-NODE
# =============================================================================


class TestIncomingRequest:
    def test_received(self, client, service):
        response = client.post("/api/federation/requests/incoming", json=_incoming_body(message="hi"))

        assert response.status_code == 200
        data = response.json()
        identity = service.store.get_identity(ORG)
        assert data["success"] is True
        assert data["nodeId"] == identity.node_id
        assert data["nodeName"] == identity.node_name
        request = service.store.get_request(ORG, data["requestId"])
        assert request.message == "hi"

    def test_missing_field(self, client):
        body = _incoming_body()
        del body["secretKey"]
        response = client.post("/api/federation/requests/incoming", json=body)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_MISSING_FIELD"

    def test_invalid_json(self, client):
        response = client.post(
            "/api/federation/requests/incoming",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_INVALID_JSON"

    def test_non_object_body(self, client):
        response = client.post("/api/federation/requests/incoming", json=["x"])
        assert response.status_code == 400

    def test_bad_requester_url(self, client):
        response = client.post("/api/federation/requests/incoming", json=_incoming_body(requesterNodeUrl="nowhere"))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_INVALID_VALUE"

    def test_duplicate(self, client):
        _receive(client)
        response = client.post("/api/federation/requests/incoming", json=_incoming_body())
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT_PENDING_REQUEST"


class TestCallbacks:
    def test_acknowledge_without_match(self, client):
        response = client.post(
            "/api/federation/requests/acknowledge-callback",
            json={"principleNodeId": "hq", "principleNodeUrl": HQ_URL, "secretKey": SECRET},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NO_MATCHING_REQUEST"

    def test_acknowledge_missing_secret(self, client):
        response = client.post(
            "/api/federation/requests/acknowledge-callback",
            json={"principleNodeId": "hq", "principleNodeUrl": HQ_URL},
        )
        assert response.status_code == 400

    def test_acknowledge_establishes_partnership(self, client, service, notifier, tokens, configured):
        client.post("/api/federation/requests", json={"target_node_url": HQ_URL}, headers=tokens["admin"])
        secret = notifier.sent[-1][1]["secretKey"]

        response = client.post(
            "/api/federation/requests/acknowledge-callback",
            json={
                "requestId": "remote-1",
                "status": "ACKNOWLEDGED",
                "principleNodeId": "hq-node",
                "principleNodeName": "hq",
                "principleNodeUrl": HQ_URL,
                "secretKey": secret,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Partnership established", "role": "PARTNER"}
        assert service.store.get_identity(ORG).principle_node_id == "hq-node"

    def test_reject_requires_correlation(self, client):
        response = client.post("/api/federation/requests/reject-callback", json={"reason": "no"})
        assert response.status_code == 400

    def test_reject_without_match(self, client):
        response = client.post(
            "/api/federation/requests/reject-callback",
            json={"requestId": "r-1", "principleNodeId": "hq", "reason": "no"},
        )
        assert response.status_code == 404

    def test_reject_marks_outgoing(self, client, service, notifier, tokens, configured):
        notifier.responses[join_url(HQ_URL, INCOMING_PATH)] = {"requestId": "remote-1", "nodeId": "hq-node"}
        sent = client.post("/api/federation/requests", json={"target_node_url": HQ_URL}, headers=tokens["admin"])
        request_id = sent.json()["request"]["id"]

        response = client.post(
            "/api/federation/requests/reject-callback",
            json={"requestId": "remote-1", "principleNodeId": "hq-node", "reason": "Region full"},
        )

        assert response.status_code == 200
        stored = service.store.get_request(ORG, request_id)
        assert stored.status is RequestStatus.REJECTED
        assert stored.rejection_reason == "Region full"


class TestHeartbeatEndpoint:
    def test_invalid_role(self, client):
        response = client.post("/api/federation/heartbeat", json={"nodeId": "n1", "role": "STANDALONE"})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid role"

    def test_unknown_partner(self, client):
        response = client.post(
            "/api/federation/heartbeat",
            json={"nodeId": "n1", "role": "PARTNER"},
            headers={SECRET_HEADER: SECRET},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "UNKNOWN_PARTNER"

    def test_partner_heartbeat(self, client, service, clock):
        service.identities.declare_principle(ORG)
        partner = service.store.add_partner(
            Partner(org_id=ORG, node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key=SECRET)
        )

        response = client.post(
            "/api/federation/heartbeat",
            json={"nodeId": "node-a", "nodeUrl": EDGE_URL, "role": "PARTNER"},
            headers={SECRET_HEADER: SECRET},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "role": "PRINCIPLE", "timestamp": clock().isoformat()}
        assert service.store.get_partner(ORG, partner.id).last_heartbeat == clock()

    def test_principle_heartbeat_to_non_partner(self, client):
        response = client.post("/api/federation/heartbeat", json={"nodeId": "hq-node", "role": "PRINCIPLE"})
        assert response.status_code == 404


class TestDisconnectedEndpoint:
    def test_missing_principle(self, client):
        response = client.post("/api/federation/partners/disconnected", json={})
        assert response.status_code == 400

    def test_not_our_principle(self, client):
        response = client.post("/api/federation/partners/disconnected", json={"principleNodeId": "hq"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_A_PARTNER_OF_THIS_PRINCIPLE"

    def test_reverts(self, client, service, clock):
        identity = service.identities.get_or_create(ORG)
        identity.become_partner("hq-node", HQ_URL, SECRET, clock())
        service.store.save_identity(identity)

        response = client.post("/api/federation/partners/disconnected", json={"principleNodeId": "hq-node"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "reverted": 1}
        assert service.store.get_identity(ORG).role is NodeRole.STANDALONE

    def test_reverts_only_named_partner(self, client, service, clock):
        for org_id in (ORG, "globex"):
            identity = service.identities.get_or_create(org_id)
            identity.become_partner("hq-node", HQ_URL, SECRET, clock())
            service.store.save_identity(identity)
        removed = service.store.get_identity("globex")

        response = client.post(
            "/api/federation/partners/disconnected",
            json={"principleNodeId": "hq-node", "partnerNodeId": removed.node_id},
        )

        assert response.json() == {"success": True, "reverted": 1}
        assert service.store.get_identity("globex").role is NodeRole.STANDALONE
        assert service.store.get_identity(ORG).role is NodeRole.PARTNER


# =============================================================================
# ADMINISTRATIVE
# =============================================================================


class TestAdminAuth:
    def test_missing_token(self, client):
        response = client.get("/api/federation")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_MISSING_TOKEN"

    def test_invalid_token(self, client, tokens):
        response = client.get("/api/federation", headers={"Authorization": "Bearer tp_bogus"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_INVALID_TOKEN"

    def test_member_can_read(self, client, tokens):
        assert client.get("/api/federation", headers=tokens["member"]).status_code == 200

    def test_member_cannot_mutate(self, client, tokens):
        response = client.post("/api/federation/principle", headers=tokens["member"])
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN_INSUFFICIENT_PERMISSION"


class TestIdentityEndpoints:
    def test_overview(self, client, tokens):
        _receive(client)
        response = client.get("/api/federation", headers=tokens["admin"])
        data = response.json()
        assert data["identity"]["org_id"] == ORG
        assert data["identity"]["role"] == "STANDALONE"
        assert data["partners"] == 0
        assert data["pending_requests"] == 1

    def test_configure(self, client, tokens, service):
        response = client.post(
            "/api/federation",
            json={"node_name": "edge-eu-1", "node_url": "https://edge-eu-1.example.com/"},
            headers=tokens["admin"],
        )
        assert response.status_code == 200
        assert response.json()["identity"]["node_url"] == "https://edge-eu-1.example.com"
        assert service.store.get_identity(ORG).node_name == "edge-eu-1"

    def test_configure_requires_a_field(self, client, tokens):
        response = client.post("/api/federation", json={}, headers=tokens["admin"])
        assert response.status_code == 400

    def test_configure_bad_url(self, client, tokens):
        response = client.post("/api/federation", json={"node_url": "edge"}, headers=tokens["admin"])
        assert response.status_code == 400

    def test_declare_principle(self, client, tokens):
        response = client.post("/api/federation/principle", headers=tokens["admin"])
        assert response.status_code == 200
        assert response.json()["identity"]["role"] == "PRINCIPLE"

    def test_partner_cannot_declare_principle(self, client, tokens, service, clock):
        identity = service.identities.get_or_create(ORG)
        identity.become_partner("hq-node", HQ_URL, SECRET, clock())
        service.store.save_identity(identity)

        response = client.post("/api/federation/principle", headers=tokens["admin"])

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT_ROLE"


class TestRequestEndpoints:
    def test_send_unconfigured(self, client, tokens):
        response = client.post("/api/federation/requests", json={"target_node_url": HQ_URL}, headers=tokens["admin"])
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "FEDERATION_NOT_CONFIGURED"

    def test_send_missing_target(self, client, tokens, configured):
        response = client.post("/api/federation/requests", json={}, headers=tokens["admin"])
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_MISSING_FIELD"

    def test_send_delivered(self, client, tokens, configured):
        response = client.post(
            "/api/federation/requests",
            json={"target_node_url": HQ_URL, "message": "hello"},
            headers=tokens["admin"],
        )
        assert response.status_code == 200
        data = response.json()
        assert data["delivered"] is True
        assert data["request"]["type"] == "OUTGOING"
        assert "secret_key" not in data["request"]

    def test_principle_cannot_send(self, client, tokens, service, notifier, configured):
        service.identities.declare_principle(ORG)
        response = client.post("/api/federation/requests", json={"target_node_url": HQ_URL}, headers=tokens["admin"])
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT_ROLE"
        assert notifier.sent == []

    def test_send_undelivered_is_accepted(self, client, tokens, notifier, configured):
        notifier.fail = True
        response = client.post("/api/federation/requests", json={"target_node_url": HQ_URL}, headers=tokens["admin"])
        assert response.status_code == 202
        assert response.json()["delivered"] is False
        assert response.json()["error"] == "Cannot connect to host"

    def test_list_with_status(self, client, tokens):
        _receive(client)
        response = client.get("/api/federation/requests?status=pending", headers=tokens["member"])
        assert response.status_code == 200
        assert [r["status"] for r in response.json()["requests"]] == ["PENDING"]

        response = client.get("/api/federation/requests?status=REJECTED", headers=tokens["member"])
        assert response.json()["requests"] == []

    def test_list_bad_status(self, client, tokens):
        response = client.get("/api/federation/requests?status=bogus", headers=tokens["member"])
        assert response.status_code == 400

    def test_accept(self, client, tokens, service, notifier, configured):
        request_id = _receive(client)

        response = client.patch(
            f"/api/federation/requests/{request_id}", json={"action": "accept"}, headers=tokens["admin"]
        )

        assert response.status_code == 200
        data = response.json()
        assert data["request"]["status"] == "ACKNOWLEDGED"
        assert data["partner"]["node_id"] == "node-a"
        assert data["notification"]["delivered"] is True
        assert len(service.store.list_partners(ORG)) == 1

    def test_accept_twice(self, client, tokens, configured):
        request_id = _receive(client)
        client.patch(f"/api/federation/requests/{request_id}", json={"action": "accept"}, headers=tokens["admin"])
        response = client.patch(
            f"/api/federation/requests/{request_id}", json={"action": "accept"}, headers=tokens["admin"]
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ALREADY_PROCESSED"

    def test_accept_expired(self, client, tokens, clock, configured):
        request_id = _receive(client)
        clock.advance(hours=25)
        response = client.patch(
            f"/api/federation/requests/{request_id}", json={"action": "accept"}, headers=tokens["admin"]
        )
        assert response.status_code == 410

    def test_reject_with_reason(self, client, tokens, service):
        request_id = _receive(client)
        response = client.patch(
            f"/api/federation/requests/{request_id}",
            json={"action": "reject", "reason": "Not now"},
            headers=tokens["admin"],
        )
        assert response.status_code == 200
        assert response.json()["request"]["rejection_reason"] == "Not now"

    def test_invalid_action(self, client, tokens):
        request_id = _receive(client)
        response = client.patch(
            f"/api/federation/requests/{request_id}", json={"action": "maybe"}, headers=tokens["admin"]
        )
        assert response.status_code == 400

    def test_missing_action(self, client, tokens):
        request_id = _receive(client)
        response = client.patch(f"/api/federation/requests/{request_id}", json={}, headers=tokens["admin"])
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_MISSING_FIELD"

    def test_unknown_request(self, client, tokens):
        response = client.patch("/api/federation/requests/missing", json={"action": "accept"}, headers=tokens["admin"])
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND_REQUEST"

    def test_other_org_cannot_respond(self, client, tokens):
        request_id = _receive(client)
        response = client.patch(
            f"/api/federation/requests/{request_id}", json={"action": "reject"}, headers=tokens["other_org"]
        )
        assert response.status_code == 404

    def test_cancel(self, client, tokens):
        request_id = _receive(client)
        response = client.delete(f"/api/federation/requests/{request_id}", headers=tokens["admin"])
        assert response.status_code == 200
        assert response.json()["request"]["status"] == "CANCELLED"

        again = client.delete(f"/api/federation/requests/{request_id}", headers=tokens["admin"])
        assert again.status_code == 404


class TestPartnerEndpoints:
    def _add_partner(self, service, **kwargs):
        return service.store.add_partner(
            Partner(org_id=ORG, node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key=SECRET, **kwargs)
        )

    def test_list(self, client, tokens, service):
        self._add_partner(service)
        response = client.get("/api/federation/partners", headers=tokens["member"])
        partners = response.json()["partners"]
        assert [p["node_id"] for p in partners] == ["node-a"]
        assert "secret_key" not in partners[0]

    def test_list_active_only(self, client, tokens, service):
        self._add_partner(service, is_active=False)
        response = client.get("/api/federation/partners?active=true", headers=tokens["member"])
        assert response.json()["partners"] == []

    def test_revoke(self, client, tokens, service, notifier):
        partner = self._add_partner(service)
        response = client.delete(f"/api/federation/partners/{partner.id}", headers=tokens["admin"])
        assert response.status_code == 200
        assert response.json()["notification"]["delivered"] is True
        assert service.store.list_partners(ORG) == []

    def test_revoke_missing(self, client, tokens):
        response = client.delete("/api/federation/partners/missing", headers=tokens["admin"])
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND_PARTNER"


class TestLivenessEndpoints:
    def test_standalone(self, client, tokens):
        response = client.get("/api/federation/heartbeat", headers=tokens["member"])
        assert response.status_code == 200
        assert response.json() == {"success": True, "role": "STANDALONE", "message": "Not part of a federation"}

    def test_send_round(self, client, tokens, service):
        service.identities.declare_principle(ORG)
        service.store.add_partner(
            Partner(org_id=ORG, node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key=SECRET)
        )
        response = client.post("/api/federation/heartbeat/send", headers=tokens["admin"])
        data = response.json()
        assert data["role"] == "PRINCIPLE"
        assert data["sent"] == 1
        assert data["delivered"] == 1


class TestInternalErrors:
    def test_unexpected_error_is_500(self, client, tokens, service):
        with patch.object(service.handshake, "list_requests", side_effect=RuntimeError("boom")):
            response = client.get("/api/federation/requests", headers=tokens["admin"])
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert error["request_id"]

"""Tests for the heartbeat monitor."""

from __future__ import annotations

from datetime import timedelta

import pytest

from trafficplane.core.exceptions import ValidationException
from trafficplane.federation.errors import NotAPartner, UnknownPartner
from trafficplane.federation.heartbeat import HEARTBEAT_PATH, parse_heartbeat
from trafficplane.federation.models import (
    HeartbeatFromPartner,
    HeartbeatFromPrinciple,
    NodeRole,
    Partner,
)
from trafficplane.federation.notify import SECRET_HEADER, join_url

ORG = "acme"
SECRET = "c" * 64
EDGE_URL = "https://edge-a.example.com"
HQ_URL = "https://hq.example.com"


@pytest.fixture
def principle(service):
    """This node is a Principle with one partner, node-a."""
    service.identities.configure(ORG, node_url=HQ_URL)
    identity = service.identities.declare_principle(ORG)
    partner = service.store.add_partner(
        Partner(org_id=ORG, node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key=SECRET)
    )
    return identity, partner


@pytest.fixture
def partnered(service, clock):
    """This node is a Partner of hq-node."""
    identity = service.identities.configure(ORG, node_url=EDGE_URL)
    identity.become_partner("hq-node", HQ_URL, SECRET, clock())
    service.store.save_identity(identity)
    return identity


# =============================================================================
# PARSING
# =============================================================================


class TestParseHeartbeat:
    def test_partner(self):
        heartbeat = parse_heartbeat({"nodeId": "n1", "nodeUrl": EDGE_URL, "role": "PARTNER"}, SECRET)
        assert heartbeat == HeartbeatFromPartner(node_id="n1", secret_key=SECRET, node_url=EDGE_URL)

    def test_principle_ignores_secret(self):
        heartbeat = parse_heartbeat({"nodeId": "n1", "role": "PRINCIPLE"}, SECRET)
        assert heartbeat == HeartbeatFromPrinciple(node_id="n1")

    @pytest.mark.parametrize("role", ["STANDALONE", "partner", None, 7])
    def test_invalid_role(self, role):
        with pytest.raises(ValidationException, match="Invalid role"):
            parse_heartbeat({"nodeId": "n1", "role": role}, None)

    def test_missing_node_id(self):
        with pytest.raises(ValidationException, match="nodeId"):
            parse_heartbeat({"role": "PARTNER"}, SECRET)

    def test_non_object_body(self):
        with pytest.raises(ValidationException):
            parse_heartbeat(["PARTNER"], SECRET)


# =============================================================================
# RECEIVING
# =============================================================================


class TestReceiveFromPartner:
    @pytest.mark.asyncio
    async def test_valid(self, service, store, clock, principle):
        _, partner = principle
        ack = await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", SECRET))

        assert ack.role is NodeRole.PRINCIPLE
        assert ack.to_dict() == {"success": True, "role": "PRINCIPLE", "timestamp": clock().isoformat()}
        assert store.get_partner(ORG, partner.id).last_heartbeat == clock()

    @pytest.mark.asyncio
    async def test_wrong_secret(self, service, store, principle):
        _, partner = principle
        with pytest.raises(UnknownPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", "d" * 64))
        assert store.get_partner(ORG, partner.id).last_heartbeat is None

    @pytest.mark.asyncio
    async def test_unknown_node_looks_the_same(self, service, principle):
        with pytest.raises(UnknownPartner) as unknown_node:
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-z", SECRET))
        with pytest.raises(UnknownPartner) as wrong_secret:
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", "nope"))
        assert unknown_node.value.message == wrong_secret.value.message

    @pytest.mark.asyncio
    async def test_missing_secret(self, service, principle):
        with pytest.raises(UnknownPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", None))

    @pytest.mark.asyncio
    async def test_inactive_partner(self, service, store):
        service.identities.declare_principle(ORG)
        store.add_partner(
            Partner(
                org_id=ORG,
                node_id="node-a",
                node_name="edge-a",
                node_url=EDGE_URL,
                secret_key=SECRET,
                is_active=False,
            )
        )
        with pytest.raises(UnknownPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", SECRET))

    @pytest.mark.asyncio
    async def test_receiver_not_principle(self, service, store):
        service.identities.get_or_create(ORG)
        store.add_partner(
            Partner(org_id=ORG, node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key=SECRET)
        )
        with pytest.raises(UnknownPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", SECRET))

    @pytest.mark.asyncio
    async def test_picks_org_by_secret(self, service, store, clock, principle):
        service.identities.declare_principle("globex")
        other = store.add_partner(
            Partner(org_id="globex", node_id="node-a", node_name="edge-a", node_url=EDGE_URL, secret_key="e" * 64)
        )
        await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", "e" * 64))
        assert store.get_partner("globex", other.id).last_heartbeat == clock()
        assert store.get_partner(ORG, principle[1].id).last_heartbeat is None


class TestReceiveFromPrinciple:
    @pytest.mark.asyncio
    async def test_valid(self, service, store, clock, partnered):
        ack = await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))
        assert ack.role is NodeRole.PARTNER
        assert store.get_identity(ORG).last_heartbeat == clock()

    @pytest.mark.asyncio
    async def test_updates_every_following_org(self, service, store, clock, partnered):
        other = service.identities.get_or_create("globex")
        other.become_partner("hq-node", HQ_URL, "d" * 64, clock())
        store.save_identity(other)
        clock.advance(seconds=5)

        await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))

        assert store.get_identity(ORG).last_heartbeat == clock()
        assert store.get_identity("globex").last_heartbeat == clock()

    @pytest.mark.asyncio
    async def test_unknown_principle(self, service, partnered):
        with pytest.raises(NotAPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("someone-else"))

    @pytest.mark.asyncio
    async def test_standalone_node(self, service):
        service.identities.get_or_create(ORG)
        with pytest.raises(NotAPartner):
            await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))

    @pytest.mark.asyncio
    async def test_timestamp_never_moves_backwards(self, service, store, clock, partnered):
        await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))
        latest = clock()
        clock.current = latest - timedelta(seconds=10)
        await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))
        assert store.get_identity(ORG).last_heartbeat == latest


# =============================================================================
# LIVENESS
# =============================================================================


class TestLivenessStatus:
    def test_standalone(self, service):
        report = service.heartbeat.get_liveness_status(ORG)
        assert report.to_dict()["role"] == "STANDALONE"

    @pytest.mark.asyncio
    async def test_principle_view(self, service, clock, principle):
        report = service.heartbeat.get_liveness_status(ORG)
        assert report.to_dict()["partners"][0]["is_alive"] is False

        await service.heartbeat.receive_heartbeat(HeartbeatFromPartner("node-a", SECRET))
        clock.advance(seconds=59)
        entry = service.heartbeat.get_liveness_status(ORG).to_dict()["partners"][0]
        assert entry["is_alive"] is True
        assert entry["seconds_since_last_heartbeat"] == 59

        clock.advance(seconds=1)
        assert service.heartbeat.get_liveness_status(ORG).to_dict()["partners"][0]["is_alive"] is False

    @pytest.mark.asyncio
    async def test_partner_view(self, service, clock, partnered):
        await service.heartbeat.receive_heartbeat(HeartbeatFromPrinciple("hq-node"))
        clock.advance(seconds=30)
        data = service.heartbeat.get_liveness_status(ORG).to_dict()
        assert data["role"] == "PARTNER"
        assert data["principle"]["node_id"] == "hq-node"
        assert data["principle"]["is_alive"] is True
        assert data["principle"]["seconds_since_last_heartbeat"] == 30


# =============================================================================
# SENDING
# =============================================================================


class TestSendHeartbeats:
    @pytest.mark.asyncio
    async def test_standalone_sends_nothing(self, service, notifier):
        assert await service.heartbeat.send_heartbeats(ORG) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_partner_reports_to_principle(self, service, notifier, partnered):
        outcomes = await service.heartbeat.send_heartbeats(ORG)

        assert len(outcomes) == 1
        assert outcomes[0].delivered
        url, payload, headers = notifier.sent[-1]
        assert url == join_url(HQ_URL, HEARTBEAT_PATH)
        assert payload == {"nodeId": partnered.node_id, "nodeUrl": EDGE_URL, "role": "PARTNER"}
        assert headers == {SECRET_HEADER: SECRET}

    @pytest.mark.asyncio
    async def test_partner_without_secret(self, service, store, notifier, clock):
        identity = service.identities.get_or_create(ORG)
        identity.become_partner("hq-node", HQ_URL, None, clock())
        store.save_identity(identity)

        outcomes = await service.heartbeat.send_heartbeats(ORG)

        assert not outcomes[0].delivered
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_principle_reaches_active_partners(self, service, store, notifier, principle):
        identity, _ = principle
        store.add_partner(
            Partner(
                org_id=ORG,
                node_id="node-b",
                node_name="edge-b",
                node_url="https://edge-b.example.com",
                secret_key="b" * 64,
                is_active=False,
            )
        )

        outcomes = await service.heartbeat.send_heartbeats(ORG)

        assert [o.url for o in outcomes] == [join_url(EDGE_URL, HEARTBEAT_PATH)]
        _, payload, headers = notifier.sent[-1]
        assert payload == {"nodeId": identity.node_id, "nodeUrl": HQ_URL, "role": "PRINCIPLE"}
        assert headers == {SECRET_HEADER: SECRET}

    @pytest.mark.asyncio
    async def test_failures_are_reported_not_raised(self, service, notifier, principle):
        notifier.fail = True
        outcomes = await service.heartbeat.send_heartbeats(ORG)
        assert len(outcomes) == 1
        assert not outcomes[0].delivered

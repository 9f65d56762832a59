#!/usr/bin/env python3
"""
Tests for NodeSession, the per-connection state machine.

Tests cover:
1. Authentication (success, failure, duplicate Auth)
2. SetAddress before/after authentication
3. Close semantics (exactly-once cleanup)
4. Pre-authenticated open
5. Displacement when two sessions claim the same node
6. Wire message parsing
"""

import json
import sys
import threading
from pathlib import Path
from uuid import uuid4

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from proxy_coordinator.registry import ActiveRegistry, RegisteredNode, RegistrationStore
from proxy_coordinator.session import (
    AuthMessage,
    NodeSession,
    SessionState,
    SetAddressMessage,
    UnrecognizedMessage,
    parse_session_message,
)
from proxy_coordinator.session import messages as m


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    return RegistrationStore()


@pytest.fixture
def active():
    return ActiveRegistry()


@pytest.fixture
def node(store):
    registered = RegisteredNode(id=uuid4(), password="p1", mac_id="d1")
    store.register(registered)
    return registered


@pytest.fixture
def session(store, active):
    return NodeSession(store, active)


def auth_text(node_id, password):
    return json.dumps({"type": "Auth", "id": str(node_id), "password": password})


def address_text(ip, port):
    return json.dumps({"type": "SetAddress", "ip": ip, "port": port})


# =============================================================================
# Authentication
# =============================================================================

class TestAuthentication:

    def test_starts_unauthenticated(self, session):
        reply = session.start()
        assert reply.notice is None
        assert reply.close is False
        assert session.state == SessionState.UNAUTHENTICATED

    def test_successful_auth_publishes_node(self, session, node, active):
        reply = session.handle_text(auth_text(node.id, "p1"))

        assert reply.notice == "Authenticated"
        assert reply.close is False
        assert session.state == SessionState.AUTHENTICATED
        assert session.node_id == node.id
        assert session.mac_id == "d1"

        nodes = active.list_nodes()
        assert len(nodes) == 1
        assert nodes[0].id == node.id
        assert nodes[0].ip == "unknown"
        assert nodes[0].port == 0
        assert nodes[0].active is True
        assert nodes[0].mac_id == "d1"

    def test_wrong_password_closes_session(self, session, node, active):
        reply = session.handle_text(auth_text(node.id, "wrong"))

        assert reply.notice == "Authentication failed"
        assert reply.close is True
        assert session.state == SessionState.CLOSED
        assert active.list_nodes() == []

    def test_unknown_id_closes_session(self, session, active):
        reply = session.handle_text(auth_text(uuid4(), "p1"))

        assert reply.notice == "Authentication failed"
        assert reply.close is True
        assert session.is_closed
        assert len(active) == 0

    def test_duplicate_auth_is_noop(self, session, node, active, store):
        session.handle_text(auth_text(node.id, "p1"))
        session.handle_text(address_text("10.0.0.5", 9000))

        other = RegisteredNode(id=uuid4(), password="p2", mac_id="d2")
        store.register(other)
        reply = session.handle_text(auth_text(other.id, "p2"))

        assert reply.notice == "Already authenticated"
        assert reply.close is False
        assert session.node_id == node.id
        nodes = active.list_nodes()
        assert len(nodes) == 1
        assert nodes[0].ip == "10.0.0.5"

    def test_failed_second_auth_does_not_close(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))
        reply = session.handle_text(auth_text(node.id, "wrong"))

        assert reply.notice == "Already authenticated"
        assert session.is_authenticated
        assert len(active) == 1


# =============================================================================
# SetAddress
# =============================================================================

class TestSetAddress:

    def test_set_address_before_auth_rejected(self, session, active):
        reply = session.handle_text(address_text("10.0.0.5", 9000))

        assert reply.notice == "Not authenticated"
        assert reply.close is False
        assert session.state == SessionState.UNAUTHENTICATED
        assert active.list_nodes() == []

    def test_set_address_updates_entry(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))
        reply = session.handle_text(address_text("10.0.0.5", 9000))

        assert reply.notice == "Address updated"
        entry = active.get(node.id)
        assert entry.ip == "10.0.0.5"
        assert entry.port == 9000

    def test_set_address_after_eviction_fails(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))
        active.remove(node.id)

        reply = session.handle_text(address_text("10.0.0.5", 9000))

        assert reply.notice == "Address update failed"
        assert reply.close is False
        assert session.is_authenticated
        assert active.get(node.id) is None

    def test_out_of_range_port_is_format_error(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))
        reply = session.handle_text(address_text("10.0.0.5", 70000))

        assert reply.notice == "Invalid message format"
        assert active.get(node.id).port == 0


# =============================================================================
# Malformed messages
# =============================================================================

class TestMalformedMessages:

    @pytest.mark.parametrize("text", [
        "not json",
        "{}",
        '{"type": "Hello"}',
        '{"type": "Auth", "id": "not-a-uuid", "password": "x"}',
        '{"type": "SetAddress", "ip": "1.2.3.4"}',
    ])
    def test_malformed_message_keeps_session(self, session, text):
        reply = session.handle_text(text)

        assert reply.notice == "Invalid message format"
        assert reply.close is False
        assert session.state == SessionState.UNAUTHENTICATED

    @pytest.mark.parametrize("port", ["true", '"9000"', "9000.0", "9000.5", "null"])
    def test_wrongly_typed_port_leaves_entry_unchanged(self, session, node, active, port):
        session.handle_text(auth_text(node.id, "p1"))
        reply = session.handle_text('{"type": "SetAddress", "ip": "1.2.3.4", "port": %s}' % port)

        assert reply.notice == "Invalid message format"
        entry = active.get(node.id)
        assert entry.ip == "unknown"
        assert entry.port == 0

    @pytest.mark.parametrize("text", [
        '{"type": "SetAddress", "ip": 1234, "port": 80}',
        '{"type": "Auth", "id": "%s", "password": 1}',
    ])
    def test_wrongly_typed_fields_rejected(self, session, node, active, text):
        if "%s" in text:
            text = text % node.id
        reply = session.handle_text(text)

        assert reply.notice == "Invalid message format"
        assert session.state == SessionState.UNAUTHENTICATED
        assert len(active) == 0

    def test_malformed_after_auth_keeps_state(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))
        reply = session.handle_text("garbage")

        assert reply.notice == "Invalid message format"
        assert session.is_authenticated
        assert len(active) == 1

    def test_strict_mode_closes_on_malformed_first_message(self, store, active):
        strict = NodeSession(store, active, close_on_malformed_first_message=True)
        reply = strict.handle_text("garbage")

        assert reply.notice == "Invalid message format"
        assert reply.close is True
        assert strict.is_closed

    def test_strict_mode_tolerates_later_malformed_message(self, store, active, node):
        strict = NodeSession(store, active, close_on_malformed_first_message=True)
        strict.handle_text(auth_text(node.id, "p1"))
        reply = strict.handle_text("garbage")

        assert reply.close is False
        assert strict.is_authenticated


# =============================================================================
# Close
# =============================================================================

class TestClose:

    def test_close_removes_own_entry_only(self, store, active, node):
        other = RegisteredNode(id=uuid4(), password="p2", mac_id="d2")
        store.register(other)

        first = NodeSession(store, active)
        second = NodeSession(store, active)
        first.handle_text(auth_text(node.id, "p1"))
        second.handle_text(auth_text(other.id, "p2"))

        assert first.close() is True

        ids = [n.id for n in active.list_nodes()]
        assert ids == [other.id]

    def test_close_is_idempotent(self, session, node, active):
        session.handle_text(auth_text(node.id, "p1"))

        assert session.close() is True
        assert session.close() is False
        assert session.state == SessionState.CLOSED
        assert len(active) == 0

    def test_concurrent_close_runs_cleanup_once(self, session, node, active, monkeypatch):
        session.handle_text(auth_text(node.id, "p1"))

        calls = []
        original_remove = active.remove

        def counting_remove(node_id, owner=None):
            calls.append(node_id)
            return original_remove(node_id, owner=owner)

        monkeypatch.setattr(active, "remove", counting_remove)

        barrier = threading.Barrier(8)

        def closer():
            barrier.wait()
            session.close()

        threads = [threading.Thread(target=closer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert calls == [node.id]
        assert len(active) == 0

    def test_close_before_auth_touches_nothing(self, session, active, store):
        bystander = RegisteredNode(id=uuid4(), password="x", mac_id="y")
        store.register(bystander)
        NodeSession(store, active).handle_text(auth_text(bystander.id, "x"))

        session.close()

        assert len(active) == 1

    def test_messages_after_close_are_ignored(self, session, node, active):
        session.close()
        reply = session.handle_text(auth_text(node.id, "p1"))

        assert reply.notice is None
        assert session.is_closed
        assert len(active) == 0


# =============================================================================
# Pre-authenticated open
# =============================================================================

class TestPreauthenticated:

    def test_known_node_registers_immediately(self, session, node, active):
        reply = session.start(preauthenticated_id=node.id)

        assert reply.notice is None
        assert session.is_authenticated
        assert active.get(node.id).mac_id == "d1"

    def test_unknown_node_is_rejected(self, session, active):
        reply = session.start(preauthenticated_id=uuid4())

        assert reply.notice == "Authentication required"
        assert reply.close is True
        assert session.is_closed
        assert len(active) == 0

    def test_auth_message_after_preauth_is_noop(self, session, node, active):
        session.start(preauthenticated_id=node.id)
        reply = session.handle_text(auth_text(node.id, "p1"))
        assert reply.notice == "Already authenticated"


# =============================================================================
# Two sessions, same node
# =============================================================================

class TestDisplacement:

    def test_same_node_twice_leaves_one_entry(self, store, active, node):
        first = NodeSession(store, active)
        second = NodeSession(store, active)

        assert first.handle_text(auth_text(node.id, "p1")).notice == "Authenticated"
        assert second.handle_text(auth_text(node.id, "p1")).notice == "Authenticated"

        assert len(active.list_nodes()) == 1
        assert active.owner_of(node.id) == second.session_id

    def test_displaced_session_cannot_touch_new_entry(self, store, active, node):
        first = NodeSession(store, active)
        second = NodeSession(store, active)
        first.handle_text(auth_text(node.id, "p1"))
        second.handle_text(auth_text(node.id, "p1"))
        second.handle_text(address_text("10.0.0.7", 7000))

        reply = first.handle_text(address_text("10.0.0.1", 1000))
        assert reply.notice == "Address update failed"

        first.close()
        entry = active.get(node.id)
        assert entry is not None
        assert entry.ip == "10.0.0.7"

        second.close()
        assert active.get(node.id) is None

    def test_concurrent_auth_same_node(self, store, active, node):
        sessions = [NodeSession(store, active) for _ in range(12)]
        barrier = threading.Barrier(len(sessions))
        replies = [None] * len(sessions)

        def run(i):
            barrier.wait()
            replies[i] = sessions[i].handle_text(auth_text(node.id, "p1"))

        threads = [threading.Thread(target=run, args=(i,)) for i in range(len(sessions))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.notice == "Authenticated" for r in replies)
        assert [n.id for n in active.list_nodes()] == [node.id]
        assert active.owner_of(node.id) in {s.session_id for s in sessions}

        for s in sessions:
            s.close()
        assert active.list_nodes() == []

    def test_close_racing_auth_never_leaks_entry(self, store, active, node):
        for _ in range(200):
            session = NodeSession(store, active)
            barrier = threading.Barrier(2)

            def authenticate():
                barrier.wait()
                session.handle_text(auth_text(node.id, "p1"))

            def close():
                barrier.wait()
                session.close()

            threads = [threading.Thread(target=authenticate), threading.Thread(target=close)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert session.is_closed
            assert len(active) == 0

    def test_concurrent_auth_different_nodes(self, store, active):
        nodes = [RegisteredNode(id=uuid4(), password=f"p{i}", mac_id=f"d{i}") for i in range(10)]
        for n in nodes:
            store.register(n)
        sessions = [NodeSession(store, active) for _ in nodes]
        barrier = threading.Barrier(len(nodes))
        replies = [None] * len(nodes)

        def run(i):
            barrier.wait()
            replies[i] = sessions[i].handle_text(auth_text(nodes[i].id, f"p{i}"))

        threads = [threading.Thread(target=run, args=(i,)) for i in range(len(nodes))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.notice == "Authenticated" for r in replies)
        assert {n.id for n in active.list_nodes()} == {n.id for n in nodes}


# =============================================================================
# Wire messages
# =============================================================================

class TestMessageParsing:

    def test_parse_auth(self):
        node_id = uuid4()
        parsed = parse_session_message(auth_text(node_id, "pw"))
        assert isinstance(parsed, AuthMessage)
        assert parsed.id == node_id
        assert parsed.password == "pw"

    def test_parse_set_address(self):
        parsed = parse_session_message(address_text("10.0.0.5", 9000))
        assert isinstance(parsed, SetAddressMessage)
        assert parsed.port == 9000

    def test_extra_fields_ignored(self):
        parsed = parse_session_message('{"type": "SetAddress", "ip": "h", "port": 1, "x": 2}')
        assert isinstance(parsed, SetAddressMessage)

    def test_unknown_tag_is_unrecognized(self):
        parsed = parse_session_message('{"type": "Relay", "to": "x"}')
        assert isinstance(parsed, UnrecognizedMessage)
        assert parsed.raw == '{"type": "Relay", "to": "x"}'
        assert parsed.reason

    def test_notice_strings(self):
        assert m.NOTICE_AUTHENTICATED == "Authenticated"
        assert m.NOTICE_AUTH_FAILED == "Authentication failed"
        assert m.NOTICE_ADDRESS_UPDATED == "Address updated"
        assert m.NOTICE_NOT_AUTHENTICATED == "Not authenticated"
        assert m.NOTICE_INVALID_FORMAT == "Invalid message format"
        assert m.NOTICE_ALREADY_AUTHENTICATED == "Already authenticated"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

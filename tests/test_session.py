"""
EchoMesh - Room session tests.

Two sessions talk through an in-memory LoopbackHub. A FakeClock drives the
send cooldown and message expiry.
"""

import asyncio
import threading

import pytest

from echomesh.constants import APP_ID, SENDER_ECHO, SENDER_ME, SENDER_SYSTEM
from echomesh.crypto import CryptoProvider
from echomesh.errors import (
    CryptoInitializationError,
    ErrorCode,
    KeyDerivationError,
    RateLimitExceeded,
    SessionError,
    ValidationError,
)
from echomesh.room import is_valid_room_id
from echomesh.room_fsm import RoomState
from echomesh.session import RoomSession


def namespace(room_id):
    return f"{APP_ID}/{room_id}"


async def joined_pair(make_session, password=None):
    """Alice creates a room and Bob joins it with the given password."""
    alice = make_session()
    identity = alice.create_room()
    bob = make_session(password_provider=lambda room_id: password or identity.password)
    await bob.request_join(identity.room_id)
    return alice, bob, identity


class TestCreateRoom:
    def test_create_room_unlocks(self, make_session, hub):
        session = make_session()
        identity = session.create_room()

        assert session.state == RoomState.UNLOCKED
        assert session.room_id == identity.room_id
        assert is_valid_room_id(identity.room_id)
        assert hub.members(namespace(identity.room_id)) == 1
        assert session.key_fingerprint is not None

    def test_room_info_hides_password(self, make_session):
        session = make_session()
        identity = session.create_room()
        info = session.room_info()

        assert info["room_id"] == identity.room_id
        assert info["state"] == "UNLOCKED"
        assert info["connected"] is True
        assert identity.password not in str(info)
        assert identity.password not in repr(identity)

    def test_requires_initialized_provider(self, hub):
        with pytest.raises(CryptoInitializationError):
            RoomSession(CryptoProvider(), hub)


class TestJoin:
    @pytest.mark.asyncio
    async def test_two_peers_exchange_messages(self, make_session):
        alice, bob, identity = await joined_pair(make_session)

        assert bob.state == RoomState.UNLOCKED
        assert bob.key_fingerprint == alice.key_fingerprint

        sent = await alice.send("hi bob")

        assert [m.text for m in sent] == ["hi bob"]
        assert sent[0].sender == SENDER_ME
        assert [m.text for m in bob.messages] == ["hi bob"]
        assert bob.messages[0].sender == alice._channel.peer_id
        assert bob.stats["received"] == 1

    @pytest.mark.asyncio
    async def test_async_password_provider(self, make_session):
        alice = make_session()
        identity = alice.create_room()

        async def provide(room_id):
            await asyncio.sleep(0)
            return identity.password

        bob = make_session(password_provider=provide)

        assert await bob.request_join(identity.room_id) is True
        assert bob.key_fingerprint == alice.key_fingerprint

    @pytest.mark.asyncio
    async def test_wrong_password_drops_messages(self, make_session):
        """A wrong password is only noticed when messages fail to authenticate."""
        alice, bob, _ = await joined_pair(make_session, password="not-the-password")

        assert bob.state == RoomState.UNLOCKED
        assert bob.key_fingerprint != alice.key_fingerprint

        await alice.send("secret")

        assert bob.messages == []
        assert bob.stats["dropped"] == 1

    @pytest.mark.asyncio
    async def test_invalid_room_id_leaves_session_untouched(self, make_session):
        session = make_session()
        identity = session.create_room()
        epoch = session.epoch

        candidates = ["", "room-ABCDEFGHIJKLMNOPQRST", "room-short", "room-aaaaaaaaaaaaaaaaaaa_"]
        for candidate in candidates:
            with pytest.raises(ValidationError):
                await session.request_join(candidate)

        assert session.state == RoomState.UNLOCKED
        assert session.room_id == identity.room_id
        assert session.epoch == epoch

    @pytest.mark.asyncio
    async def test_empty_password_keeps_sending_disabled(self, make_session):
        alice = make_session()
        identity = alice.create_room()
        bob = make_session(password_provider=lambda room_id: "")

        assert await bob.request_join(identity.room_id) is False
        assert bob.state == RoomState.ROOM_READY
        with pytest.raises(SessionError):
            await bob.send("hello")

    @pytest.mark.asyncio
    async def test_join_without_provider_then_submit(self, make_session):
        alice = make_session()
        identity = alice.create_room()
        bob = make_session()

        assert await bob.request_join(identity.room_id) is False
        assert bob.state == RoomState.ROOM_READY

        bob.submit_password(identity.password)

        assert bob.state == RoomState.UNLOCKED
        assert bob.key_fingerprint == alice.key_fingerprint

    @pytest.mark.asyncio
    async def test_submit_empty_password(self, make_session):
        session = make_session()
        await session.request_join("room-aaaaaaaaaaaaaaaaaaaa")

        with pytest.raises(KeyDerivationError):
            session.submit_password("")

        assert session.state == RoomState.ROOM_READY

    def test_submit_password_without_room(self, make_session):
        session = make_session()

        with pytest.raises(SessionError):
            session.submit_password("whatever")

    @pytest.mark.asyncio
    async def test_sync_provider_runs_off_the_event_loop(self, make_session):
        """A blocking prompt such as getpass must not stall the loop."""
        alice = make_session()
        identity = alice.create_room()
        loop_thread = threading.get_ident()
        provider_threads = []

        def prompt(room_id):
            provider_threads.append(threading.get_ident())
            return identity.password

        bob = make_session(password_provider=prompt)

        assert await bob.request_join(identity.room_id) is True
        assert provider_threads and provider_threads[0] != loop_thread

    @pytest.mark.asyncio
    async def test_password_provider_failure(self, make_session):
        async def broken(room_id):
            raise OSError("no terminal")

        session = make_session(password_provider=broken)

        with pytest.raises(SessionError) as exc_info:
            await session.request_join("room-aaaaaaaaaaaaaaaaaaaa")

        assert exc_info.value.code == ErrorCode.E305_PASSWORD_UNAVAILABLE
        assert isinstance(exc_info.value.__cause__, OSError)
        assert session.state == RoomState.ROOM_READY
        assert session.cancel_join() is False

    @pytest.mark.asyncio
    async def test_cancel_pending_join(self, make_session):
        gate = asyncio.Event()

        async def provide(room_id):
            await gate.wait()
            return "late password"

        session = make_session(password_provider=provide)
        join = asyncio.create_task(session.request_join("room-aaaaaaaaaaaaaaaaaaaa"))
        await asyncio.sleep(0.01)

        assert session.state == RoomState.ROOM_READY
        assert session.cancel_join() is True
        assert await join is False
        assert session.state == RoomState.ROOM_READY
        assert session.key_fingerprint is None
        assert session.cancel_join() is False

    @pytest.mark.asyncio
    async def test_later_join_supersedes_pending_one(self, make_session):
        gate = asyncio.Event()

        async def provide(room_id):
            await gate.wait()
            return "password"

        session = make_session(password_provider=provide)
        first = asyncio.create_task(session.request_join("room-aaaaaaaaaaaaaaaaaaaa"))
        await asyncio.sleep(0.01)

        second = asyncio.create_task(session.request_join("room-bbbbbbbbbbbbbbbbbbbb"))
        await asyncio.sleep(0.01)
        gate.set()

        assert await first is False
        assert await second is True
        assert session.room_id == "room-bbbbbbbbbbbbbbbbbbbb"
        assert session.state == RoomState.UNLOCKED


class TestRoomChange:
    @pytest.mark.asyncio
    async def test_room_change_clears_buffer_and_bumps_epoch(self, make_session, hub):
        alice, bob, identity = await joined_pair(make_session)
        await alice.send("before")
        epoch = bob.epoch

        assert len(bob.messages) == 1

        bob.create_room()

        assert bob.messages == []
        assert bob.epoch > epoch
        assert hub.members(namespace(identity.room_id)) == 1

    @pytest.mark.asyncio
    async def test_leave_room(self, make_session, hub):
        alice, bob, identity = await joined_pair(make_session)

        bob.leave_room()

        assert bob.state == RoomState.IDLE
        assert bob.room_id is None
        assert bob.key_fingerprint is None
        assert hub.members(namespace(identity.room_id)) == 1

    @pytest.mark.asyncio
    async def test_old_room_traffic_not_delivered(self, make_session):
        alice, bob, _ = await joined_pair(make_session)
        bob.create_room()

        await alice.send("anyone there?")

        assert bob.messages == []


class TestInbound:
    @pytest.mark.asyncio
    async def test_replayed_payload_dropped(self, make_session, hub):
        alice, bob, identity = await joined_pair(make_session)
        await alice.send("once")
        _, _, wire = hub.sent[-1]

        hub.inject(namespace(identity.room_id), wire)

        assert [m.text for m in bob.messages] == ["once"]
        assert bob.stats["dropped"] == 1
        assert [(m.sender, m.text) for m in alice.messages] == [(SENDER_ME, "once")]
        assert alice.stats["dropped"] == 1

    @pytest.mark.asyncio
    async def test_reflected_own_message_dropped(self, make_session, hub):
        """A peer without the key bouncing our own payload back gets nowhere."""
        alice = make_session()
        identity = alice.create_room()
        await alice.send("transfer 100 to bob")
        _, _, wire = hub.sent[-1]

        hub.inject(namespace(identity.room_id), wire, peer_id="mallory")

        assert [(m.sender, m.text) for m in alice.messages] == [
            (SENDER_ME, "transfer 100 to bob")
        ]

    @pytest.mark.asyncio
    async def test_tampered_payload_dropped(self, make_session, hub):
        alice, bob, identity = await joined_pair(make_session)
        await alice.send("original")
        _, _, wire = hub.sent[-1]
        nonce_b64, sealed_b64 = wire.split(":")
        flipped = sealed_b64[:-4] + ("AAAA" if sealed_b64[-4:] != "AAAA" else "BBBB")

        bob.receive(f"{nonce_b64}:{flipped}", "mallory")
        bob.receive("garbage", "mallory")

        assert [m.text for m in bob.messages] == ["original"]
        assert bob.stats["dropped"] == 2

    def test_receive_while_idle_dropped(self, make_session):
        session = make_session()

        assert session.receive("anything", "peer") is None
        assert session.stats["dropped"] == 1

    @pytest.mark.asyncio
    async def test_on_message_callback(self, make_session):
        alice, bob, _ = await joined_pair(make_session)
        seen = []
        bob.on_message = seen.append

        await alice.send("ping")

        assert [m.text for m in seen] == ["ping"]


class TestSend:
    @pytest.mark.asyncio
    async def test_send_requires_unlocked_room(self, make_session, hub):
        session = make_session()

        with pytest.raises(SessionError):
            await session.send("hello")
        assert hub.sent == []

    @pytest.mark.asyncio
    async def test_blank_input_ignored(self, make_session, hub):
        session = make_session()
        session.create_room()

        assert await session.send("   ") == []
        assert hub.sent == []

    @pytest.mark.asyncio
    async def test_message_too_long(self, make_session, hub):
        session = make_session(max_message_length=10)
        session.create_room()

        with pytest.raises(ValidationError):
            await session.send("x" * 11)
        assert hub.sent == []

    @pytest.mark.asyncio
    async def test_cooldown(self, make_session, hub, clock):
        session = make_session()
        session.create_room()

        await session.send("one")
        with pytest.raises(RateLimitExceeded) as exc_info:
            await session.send("two")
        assert exc_info.value.retry_after > 0

        clock.advance(0.5)
        with pytest.raises(RateLimitExceeded):
            await session.send("three")

        clock.advance(0.5)
        await session.send("four")

        assert [m.text for m in session.messages] == ["one", "four"]
        assert len(hub.sent) == 2

    @pytest.mark.asyncio
    async def test_cooldown_resets_on_room_change(self, make_session, hub):
        session = make_session()
        session.create_room()
        await session.send("one")

        session.create_room()
        sent = await session.send("first in new room")

        assert [m.text for m in sent] == ["first in new room"]
        assert len(hub.sent) == 2

    @pytest.mark.asyncio
    async def test_directives_bypass_cooldown_and_network(self, make_session, hub):
        session = make_session()
        session.create_room()
        await session.send("one")
        sent_before = len(hub.sent)

        result = await session.send("/echo hello there")

        assert [(m.sender, m.text) for m in result] == [(SENDER_ECHO, "hello there")]
        assert len(hub.sent) == sent_before

    @pytest.mark.asyncio
    async def test_directives_work_without_room(self, make_session, hub):
        session = make_session()

        result = await session.send("/status")

        assert result[0].text == "Status: Idle (no room)"
        assert hub.sent == []

    @pytest.mark.asyncio
    async def test_clear_directive(self, make_session):
        session = make_session()
        session.create_room()
        await session.send("hello")

        result = await session.send("/clear")

        assert [m.text for m in session.messages] == ["Chat cleared."]
        assert result[0].sender == SENDER_SYSTEM

    @pytest.mark.asyncio
    async def test_joinroom_directive(self, make_session):
        alice = make_session()
        identity = alice.create_room()
        bob = make_session(password_provider=lambda room_id: identity.password)

        result = await bob.send(f"/joinroom {identity.room_id}")

        assert bob.state == RoomState.UNLOCKED
        assert result[-1].text == f"Joined room: {identity.room_id}"

    @pytest.mark.asyncio
    async def test_joinroom_directive_invalid_id(self, make_session):
        session = make_session()
        identity = session.create_room()

        result = await session.send("/joinroom ROOM-nope")

        assert result[-1].sender == SENDER_SYSTEM
        assert result[-1].text.startswith("Cannot join:")
        assert session.room_id == identity.room_id
        assert session.state == RoomState.UNLOCKED


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_purge_expired(self, make_session, clock):
        session = make_session(message_lifetime=60)
        session.create_room()
        await session.send("old")
        clock.advance(30)
        await session.send("new")

        clock.advance(31)

        assert session.purge_expired() == 1
        assert [m.text for m in session.messages] == ["new"]

    @pytest.mark.asyncio
    async def test_sweep_task_purges(self, make_session, clock):
        session = make_session(message_lifetime=60, sweep_interval=0.01)
        async with session:
            session.create_room()
            await session.send("short lived")
            clock.advance(61)
            await asyncio.sleep(0.05)

            assert session.messages == []

    @pytest.mark.asyncio
    async def test_close(self, make_session, hub):
        session = make_session()
        async with session:
            identity = session.create_room()
            sweep = session._sweep_task
            assert sweep is not None

        assert session.state == RoomState.CLOSED
        assert sweep.done()
        assert session.key_fingerprint is None
        assert hub.members(namespace(identity.room_id)) == 0
        with pytest.raises(SessionError):
            session.create_room()
        with pytest.raises(SessionError):
            await session.send("/help")

    @pytest.mark.asyncio
    async def test_close_cancels_pending_join(self, make_session):
        async def provide(room_id):
            await asyncio.Event().wait()

        session = make_session(password_provider=provide)
        join = asyncio.create_task(session.request_join("room-aaaaaaaaaaaaaaaaaaaa"))
        await asyncio.sleep(0.01)

        await session.close()

        assert await join is False
        assert session.state == RoomState.CLOSED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_session):
        session = make_session()
        await session.close()
        await session.close()

        assert session.state == RoomState.CLOSED


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Change feed: fan-out, lifecycle, websocket endpoint."""

import asyncio
import json
import time

import pytest
import redis
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from canchaya.core.auth import create_access_token
from canchaya.main import app
from canchaya.models import Court
from canchaya.services.change_feed import (
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    RedisChangePublisher,
    RedisRelay,
    snapshot,
)


# ---------------------------------------------------------------------------
# Unit tests: ChangeFeed
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stopped_feed_drops_events():
    feed = ChangeFeed()
    queue = feed.subscribe()
    assert feed.publish_record("courts", ChangeType.INSERT, {"id": 1}) == 0
    assert queue.empty()


@pytest.mark.asyncio
async def test_fan_out_respects_table_filter():
    feed = ChangeFeed()
    await feed.start()
    everything = feed.subscribe()
    bookings_only = feed.subscribe("bookings")

    delivered = feed.publish_record("courts", ChangeType.UPDATE, {"id": 1}, old_record={"id": 1})

    assert delivered == 1
    assert everything.get_nowait().table == "courts"
    assert bookings_only.empty()


@pytest.mark.asyncio
async def test_unknown_table_rejected():
    with pytest.raises(ValueError):
        ChangeFeed().subscribe("payments")


@pytest.mark.asyncio
async def test_slow_subscriber_loses_oldest_event():
    feed = ChangeFeed(max_queue_size=2)
    await feed.start()
    queue = feed.subscribe()

    for i in range(3):
        feed.publish_record("customers", ChangeType.INSERT, {"id": i})

    assert [queue.get_nowait().record["id"] for _ in range(2)] == [1, 2]


@pytest.mark.asyncio
async def test_independent_instances():
    first, second = ChangeFeed(), ChangeFeed()
    await first.start()
    queue = second.subscribe()
    await second.start()

    first.publish_record("courts", ChangeType.DELETE, {"id": 1})
    assert queue.empty()


@pytest.mark.asyncio
async def test_listen_ends_when_feed_stops():
    feed = ChangeFeed()
    await feed.start()
    queue = feed.subscribe("courts")
    received: list[ChangeEvent] = []

    async def consume():
        async for event in feed.listen(queue):
            received.append(event)

    task = asyncio.create_task(consume())
    feed.publish_record("courts", ChangeType.INSERT, {"id": 7})
    await asyncio.sleep(0)
    await feed.stop()
    await asyncio.wait_for(task, timeout=1)

    assert [e.record["id"] for e in received] == [7]
    assert feed.subscriber_count == 0


def test_snapshot_uses_plain_values():
    court = Court(id=3, name="Cancha 3", court_type="futbol5", hourly_rate_cents=100, status="maintenance")
    record = snapshot(court)
    assert record["id"] == 3
    assert record["status"] == "maintenance"
    assert "created_at" not in record


def test_event_to_dict():
    event = ChangeEvent(table="bookings", event=ChangeType.DELETE, record={"id": 5})
    assert event.to_dict() == {"table": "bookings", "event": "DELETE", "record": {"id": 5}, "old_record": None}


def test_event_from_dict():
    event = ChangeEvent.from_dict(
        {"table": "bookings", "event": "UPDATE", "record": {"id": 5}, "old_record": {"status": "pending"}}
    )
    assert event.event == ChangeType.UPDATE
    assert event.old_record == {"status": "pending"}

    with pytest.raises(ValueError):
        ChangeEvent.from_dict({"table": "payments", "event": "INSERT", "record": {}})


def test_redis_publisher_sends_json(recording_redis):
    publisher = RedisChangePublisher(recording_redis, "changes")
    publisher.publish_record("bookings", ChangeType.UPDATE, {"id": 3}, old_record={"status": "pending"})

    [(channel, message)] = recording_redis.published
    assert channel == "changes"
    assert json.loads(message) == {
        "table": "bookings",
        "event": "UPDATE",
        "record": {"id": 3},
        "old_record": {"status": "pending"},
    }


def test_redis_publisher_survives_outage(caplog):
    class DownRedis:
        def publish(self, channel, message):
            raise redis.ConnectionError("connection refused")

    publisher = RedisChangePublisher(DownRedis(), "changes")
    assert publisher.publish_record("courts", ChangeType.INSERT, {"id": 1}) == 0
    assert "Could not publish" in caplog.text


@pytest.mark.asyncio
async def test_relay_forwards_channel_messages_into_feed(recording_redis):
    feed = ChangeFeed()
    await feed.start()
    queue = feed.subscribe("bookings")
    relay = RedisRelay(feed, "redis://unused", "changes")

    RedisChangePublisher(recording_redis, "changes").publish_record("bookings", ChangeType.DELETE, {"id": 8})
    [(_, message)] = recording_redis.published

    assert relay.dispatch(message.encode()) == 1
    event = queue.get_nowait()
    assert (event.table, event.event, event.record) == ("bookings", ChangeType.DELETE, {"id": 8})

    assert relay.dispatch(b"not json") == 0
    assert relay.dispatch(json.dumps({"table": "bookings"})) == 0
    assert queue.empty()


# ---------------------------------------------------------------------------
# Integration tests: websocket endpoint
# ---------------------------------------------------------------------------


def test_websocket_streams_events():
    token = create_access_token("staff-ws")
    with TestClient(app) as client:
        feed = app.state.change_feed
        with client.websocket_connect(f"/api/v1/changes?token={token}&table=bookings") as ws:
            client.portal.call(feed.publish_record, "courts", ChangeType.INSERT, {"id": 1})
            client.portal.call(
                feed.publish_record, "bookings", ChangeType.UPDATE, {"id": 9, "status": "cancelled"}
            )
            message = ws.receive_json()

    assert message["table"] == "bookings"
    assert message["event"] == "UPDATE"
    assert message["record"] == {"id": 9, "status": "cancelled"}


def test_websocket_rejects_bad_token():
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/api/v1/changes?token=not-a-jwt"):
                pass
    assert exc.value.code == 1008


def test_websocket_rejects_unknown_table():
    token = create_access_token("staff-ws")
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/v1/changes?token={token}&table=payments"):
                pass


def test_websocket_client_disconnect_releases_subscription():
    token = create_access_token("staff-ws")
    with TestClient(app) as client:
        feed = app.state.change_feed
        with client.websocket_connect(f"/api/v1/changes?token={token}") as ws:
            assert feed.subscriber_count == 1
            ws.close()

            # Nothing is published, so only the receive side can notice the close
            deadline = time.monotonic() + 2
            while feed.subscriber_count and time.monotonic() < deadline:
                time.sleep(0.01)
            assert feed.subscriber_count == 0

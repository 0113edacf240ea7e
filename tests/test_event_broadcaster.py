import json
import threading

from app.models import EventBroadcaster


def _payload(message):
    data_line = [line for line in message.splitlines() if line.startswith("data: ")][0]
    return json.loads(data_line[len("data: "):])


def test_broadcast_reaches_every_client_with_increasing_ids():
    broadcaster = EventBroadcaster()
    first = broadcaster.add_client()
    second = broadcaster.add_client()

    broadcaster.broadcast_photo_status(1, "processing")
    broadcaster.broadcast_photo_status(1, "completed")

    messages = [first.get_nowait(), first.get_nowait()]
    assert messages[0].startswith("id: 1\nevent: photo_status\n")
    assert messages[1].startswith("id: 2\n")
    assert messages[1].endswith("\n\n")
    assert _payload(messages[1])["data"] == {"photo_id": 1, "status": "completed"}
    assert "timestamp" in _payload(messages[0])
    assert second.qsize() == 2


def test_new_client_receives_in_flight_statuses():
    broadcaster = EventBroadcaster()
    broadcaster.broadcast_photo_status(1, "processing")
    broadcaster.broadcast_photo_status(2, "processing")
    broadcaster.broadcast_photo_status(2, "failed", error="detector offline")

    client = broadcaster.add_client()

    assert broadcaster.in_flight_count() == 1
    assert client.qsize() == 1
    assert _payload(client.get_nowait())["data"]["photo_id"] == 1


def test_slow_client_is_dropped():
    broadcaster = EventBroadcaster(queue_size=1)
    client = broadcaster.add_client(replay=False)

    broadcaster.broadcast_photo_status(1, "pending")
    broadcaster.broadcast_photo_status(2, "pending")

    assert broadcaster.get_client_count() == 0
    broadcaster.remove_client(client)


def test_in_flight_statuses_are_capped_at_queue_size():
    broadcaster = EventBroadcaster(queue_size=50)
    for photo_id in range(1000):
        broadcaster.broadcast_photo_status(photo_id, "pending")

    assert broadcaster.in_flight_count() == 50

    client = broadcaster.add_client()
    replayed = [_payload(client.get_nowait())["data"]["photo_id"] for _ in range(client.qsize())]
    assert replayed == list(range(950, 1000))


def test_concurrent_broadcasts_arrive_in_id_order():
    broadcaster = EventBroadcaster(queue_size=1000)
    client = broadcaster.add_client(replay=False)

    threads = [
        threading.Thread(target=lambda n=n: [broadcaster.broadcast_photo_status(n, "pending") for _ in range(50)])
        for n in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    ids = []
    while not client.empty():
        ids.append(int(client.get_nowait().splitlines()[0][len("id: "):]))
    assert len(ids) == 400
    assert ids == sorted(ids)

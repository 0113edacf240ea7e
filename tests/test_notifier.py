import threading
import time

from core.attendance.notifier import CompletionNotifier
from core.attendance.photo_status import INDETERMINATE, PhotoStatus


def test_wait_returns_when_resolved_from_another_thread():
    notifier = CompletionNotifier()
    notifier.future_for(1)
    timer = threading.Timer(0.05, notifier.resolve, args=(1, PhotoStatus.COMPLETED))
    timer.start()
    try:
        signal = notifier.wait(1, timeout=5)
    finally:
        timer.cancel()

    assert signal.status == "completed"
    assert not signal.indeterminate
    assert notifier.pending_count() == 0


def test_timeout_is_indeterminate_not_failure():
    notifier = CompletionNotifier()
    signal = notifier.wait(1, timeout=0.01)

    assert signal.indeterminate
    assert signal.status == INDETERMINATE
    assert signal.to_dict() == {"photoId": 1, "status": INDETERMINATE, "error": None}


def test_non_terminal_status_does_not_resolve():
    notifier = CompletionNotifier()
    notifier.future_for(1)
    notifier.resolve(1, "processing")
    assert notifier.wait(1, timeout=0.01).indeterminate


def test_already_terminal_photo_resolves_immediately():
    photos = {5: {"id": 5, "analysis_status": "failed", "error_message": "detector offline"}}
    notifier = CompletionNotifier(status_lookup=photos.get)

    signal = notifier.wait(5, timeout=0)

    assert signal.status == "failed"
    assert signal.error == "detector offline"


def test_pending_photo_in_lookup_still_waits():
    photos = {5: {"id": 5, "analysis_status": "processing"}}
    notifier = CompletionNotifier(status_lookup=photos.get)
    assert notifier.wait(5, timeout=0.01).indeterminate


def test_waiters_share_one_future():
    notifier = CompletionNotifier()
    first = notifier.future_for("7")
    second = notifier.future_for(7)
    assert first is second
    assert notifier.pending_count() == 1


def test_cancel_releases_waiters():
    notifier = CompletionNotifier()
    future = notifier.future_for(1)

    assert notifier.cancel(1) is True
    assert future.cancelled()
    assert notifier.cancel(1) is False
    assert notifier.pending_count() == 0


def test_cancelled_wait_is_indeterminate():
    notifier = CompletionNotifier()
    notifier.future_for(1)
    results = []
    waiter = threading.Thread(target=lambda: results.append(notifier.wait(1, timeout=5)))
    waiter.start()
    threading.Timer(0.05, notifier.cancel, args=(1,)).start()
    waiter.join(timeout=5)

    assert results and results[0].indeterminate


def test_timed_out_waits_do_not_accumulate():
    notifier = CompletionNotifier()
    for photo_id in range(100):
        assert notifier.wait(photo_id, timeout=0).indeterminate

    assert notifier.pending_count() == 0


def test_timed_out_waiter_keeps_future_for_remaining_waiter():
    notifier = CompletionNotifier()
    results = []
    waiter = threading.Thread(target=lambda: results.append(notifier.wait(1, timeout=5)))
    waiter.start()
    deadline = time.monotonic() + 5
    while notifier.pending_count() == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    assert notifier.wait(1, timeout=0).indeterminate
    assert notifier.pending_count() == 1

    notifier.resolve(1, PhotoStatus.COMPLETED)
    waiter.join(timeout=5)
    assert results and results[0].status == "completed"
    assert notifier.pending_count() == 0

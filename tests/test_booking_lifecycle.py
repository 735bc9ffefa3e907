from datetime import datetime, timedelta

from booking_lifecycle import next_status, approval_deadline

NOW = datetime(2030, 6, 10, 12, 0)


def booking(status, start, end, created=None, mark="booking"):
    return {
        "status": status,
        "mark": mark,
        "start_at": start.isoformat(),
        "end_at": end.isoformat(),
        "created_at": (created or NOW - timedelta(minutes=5)).isoformat(),
    }


def test_confirmed_becomes_rent_when_started():
    assert next_status(booking("confirmed", NOW, NOW + timedelta(days=2)), NOW) == "rent"
    assert next_status(booking("confirmed", NOW + timedelta(hours=1), NOW + timedelta(days=2)), NOW) is None


def test_rent_finishes_when_ended():
    assert next_status(booking("rent", NOW - timedelta(days=2), NOW - timedelta(minutes=1)), NOW) == "finished"
    assert next_status(booking("rent", NOW - timedelta(days=2), NOW + timedelta(minutes=1)), NOW) is None


def test_unanswered_request_is_cancelled_after_timeout():
    start = NOW + timedelta(days=3)
    end = NOW + timedelta(days=5)
    assert next_status(booking("onApproval", start, end, created=NOW - timedelta(hours=3)), NOW) == "canceledHost"
    assert next_status(booking("onApproval", start, end, created=NOW - timedelta(hours=1)), NOW) is None


def test_unanswered_request_is_cancelled_at_start():
    start = NOW - timedelta(minutes=1)
    assert next_status(booking("onApproval", start, NOW + timedelta(days=1)), NOW) == "canceledHost"


def test_blocks_and_final_statuses_never_move():
    past = NOW - timedelta(days=2)
    assert next_status(booking("confirmed", past, past, mark="block"), NOW) is None
    assert next_status(booking("finished", past, past), NOW) is None
    assert next_status(booking("canceledClient", past, past), NOW) is None


def test_approval_deadline():
    assert approval_deadline(NOW) == NOW - timedelta(hours=2)

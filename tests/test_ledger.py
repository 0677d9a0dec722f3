import threading

import pytest

from portrace.ledger import Event, EventKind, EventLedger


def test_record_stamps_elapsed_time(fake_clock):
    ledger = EventLedger(clock=fake_clock([0.5]))
    event = ledger.record(50000, 2, EventKind.ASSIGNED)
    assert event == Event(worker_id=2, timestamp=0.5, kind=EventKind.ASSIGNED)


def test_snapshot_sorts_each_kind_by_timestamp(fake_clock):
    ledger = EventLedger(clock=fake_clock([3.0, 1.0, 2.0, 0.5]))
    ledger.record(40000, 0, EventKind.BINDING)
    ledger.record(40000, 1, EventKind.BINDING)
    ledger.record(40000, 2, EventKind.BINDING)
    ledger.record(40000, 1, EventKind.ASSIGNED)
    snap = ledger.snapshot(40000)
    assert [e.worker_id for e in snap[EventKind.BINDING]] == [1, 2, 0]
    assert [e.worker_id for e in snap[EventKind.ASSIGNED]] == [1]
    assert snap[EventKind.BOUND] == []
    assert snap[EventKind.RELEASED] == []


def test_snapshot_of_untouched_port_is_empty(ledger):
    snap = ledger.snapshot(12345)
    assert set(snap) == set(EventKind)
    assert all(events == [] for events in snap.values())
    assert ledger.touched_ports() == []


@pytest.mark.parametrize("port", [-1, 65536])
def test_out_of_range_port_rejected(ledger, port):
    with pytest.raises(ValueError):
        ledger.record(port, 0, EventKind.ASSIGNED)
    with pytest.raises(ValueError):
        ledger.snapshot(port)


def test_port_bounds_accepted(ledger):
    ledger.record(0, 0, EventKind.ASSIGNED)
    ledger.record(65535, 0, EventKind.ASSIGNED)
    assert ledger.touched_ports() == [0, 65535]


def test_counts_and_balance_per_worker(ledger):
    for kind in EventKind:
        ledger.record(45000, 0, kind)
    ledger.record(45000, 1, EventKind.ASSIGNED)
    ledger.record(45000, 1, EventKind.BINDING)
    assert ledger.is_balanced(45000, worker_id=0)
    assert not ledger.is_balanced(45000, worker_id=1)
    assert not ledger.is_balanced(45000)
    assert ledger.counts(45000) == {
        EventKind.ASSIGNED: 2,
        EventKind.BINDING: 2,
        EventKind.BOUND: 1,
        EventKind.RELEASED: 1,
    }


def test_concurrent_appends_to_one_port_are_not_lost(ledger):
    threads_n, per_thread = 8, 2000
    barrier = threading.Barrier(threads_n)

    def hammer(worker_id):
        barrier.wait()
        for _ in range(per_thread):
            ledger.record(55555, worker_id, EventKind.BINDING)

    threads = [threading.Thread(target=hammer, args=(i,)) for i in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert ledger.counts(55555)[EventKind.BINDING] == threads_n * per_thread
    for i in range(threads_n):
        assert ledger.counts(55555, worker_id=i)[EventKind.BINDING] == per_thread
    assert ledger.touched_ports() == [55555]


def test_event_kind_labels():
    assert [k.label for k in EventKind] == ["Assigned", "Binding", "Bound", "Released"]
    assert [k.heading for k in EventKind] == ["Assignment", "Binding", "Bound", "Released"]

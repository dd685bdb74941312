import pytest

from tillbook.extensions import db
from tillbook.models import (
    Customer,
    ORDER_CANCELLED,
    ORDER_PENDING,
    SEGMENT_AT_RISK,
    SEGMENT_CHAMPION,
    SEGMENT_LOST,
    SEGMENT_NEW,
    SEGMENT_PROMISING,
)
from tillbook.services import segmentation_service
from tillbook.services.errors import PartialBatchFailure
from tillbook.services.scheduler import AlreadyRunning, SingleFlight, run_segmentation, segmentation_flight
from tillbook.services.segmentation_service import (
    RfmMetrics,
    classify,
    compute_metrics,
    recompute_segments,
)
from tillbook.workers.celery_app import celery_app
from tillbook.workers.segmentation import recompute_segments_task

from .conftest import AS_OF


def _segment(customer_id):
    db.session.expire_all()
    return db.session.get(Customer, customer_id).segment


def _metrics(recency, frequency, monetary_units):
    return RfmMetrics(customer_id=1, recency_days=recency, frequency=frequency, monetary_cents=monetary_units * 100)


@pytest.mark.parametrize(
    "recency, frequency, monetary, expected",
    [
        (5, 12, 72000, SEGMENT_CHAMPION),
        (120, 2, 1500, SEGMENT_AT_RISK),
        (10, 1, 50, SEGMENT_NEW),
        (40, 3, 3000, SEGMENT_PROMISING),
        (40, 1, 50, SEGMENT_PROMISING),
        # Champion outranks At-Risk
        (200, 11, 6000, SEGMENT_CHAMPION),
        # At-Risk outranks high-value Promising
        (91, 3, 2500, SEGMENT_AT_RISK),
        # boundaries are strict
        (90, 3, 2500, SEGMENT_PROMISING),
        (30, 1, 50, SEGMENT_PROMISING),
        (5, 10, 6000, SEGMENT_PROMISING),
    ],
)
def test_classify_decision_table(recency, frequency, monetary, expected):
    assert classify(_metrics(recency, frequency, monetary)) == expected


def test_scenarios_from_order_history(make_customer, make_paid_order):
    champion = make_customer()
    for i in range(12):
        make_paid_order(champion, total_cents=600_000, days_ago=i * 5)

    at_risk = make_customer()
    make_paid_order(at_risk, total_cents=100_000, days_ago=200)
    make_paid_order(at_risk, total_cents=50_000, days_ago=120)

    new = make_customer()
    make_paid_order(new, total_cents=5_000, days_ago=10)

    promising = make_customer()
    for days_ago in (40, 60, 80):
        make_paid_order(promising, total_cents=100_000, days_ago=days_ago)

    summary = recompute_segments(as_of=AS_OF)

    assert summary.succeeded == 4
    assert summary.skipped == []
    assert not summary.cancelled
    assert _segment(champion.id) == SEGMENT_CHAMPION
    assert _segment(at_risk.id) == SEGMENT_AT_RISK
    assert _segment(new.id) == SEGMENT_NEW
    assert _segment(promising.id) == SEGMENT_PROMISING


def test_only_paid_orders_count(make_customer, make_paid_order):
    customer = make_customer()
    make_paid_order(customer, total_cents=5_000, days_ago=10)
    make_paid_order(customer, total_cents=900_000, days_ago=1, status=ORDER_PENDING)
    make_paid_order(customer, total_cents=900_000, days_ago=2, status=ORDER_CANCELLED)

    [metrics] = compute_metrics(as_of=AS_OF)

    assert metrics.frequency == 1
    assert metrics.monetary_cents == 5_000
    assert metrics.recency_days == 10


def test_customers_without_paid_orders_keep_their_label(db_session, make_customer, make_paid_order):
    untouched = make_customer()
    untouched.segment = SEGMENT_LOST
    db_session.commit()
    make_paid_order(untouched, total_cents=10_000, days_ago=3, status=ORDER_PENDING)

    buyer = make_customer()
    make_paid_order(buyer, total_cents=10_000, days_ago=45)

    summary = recompute_segments(as_of=AS_OF)

    assert summary.succeeded == 1
    assert _segment(untouched.id) == SEGMENT_LOST
    assert _segment(buyer.id) == SEGMENT_PROMISING


def test_recompute_is_idempotent(make_customer, make_paid_order):
    customers = [make_customer() for _ in range(3)]
    make_paid_order(customers[0], total_cents=150_000, days_ago=100)
    make_paid_order(customers[1], total_cents=2_000, days_ago=2)
    for i in range(11):
        make_paid_order(customers[2], total_cents=60_000, days_ago=i)

    first = recompute_segments(as_of=AS_OF)
    labels_first = [_segment(c.id) for c in customers]
    second = recompute_segments(as_of=AS_OF)
    labels_second = [_segment(c.id) for c in customers]

    assert labels_first == labels_second == [SEGMENT_AT_RISK, SEGMENT_NEW, SEGMENT_CHAMPION]
    assert first.changed == 2  # the New customer was already New
    assert second.changed == 0


def test_failure_for_one_customer_does_not_abort_batch(make_customer, make_paid_order, monkeypatch):
    good_before = make_customer()
    broken = make_customer()
    good_after = make_customer()
    for customer in (good_before, broken, good_after):
        make_paid_order(customer, total_cents=300_000, days_ago=50)

    real_classify = segmentation_service.classify
    broken_id = broken.id

    def flaky_classify(metrics, *args, **kwargs):
        if metrics.customer_id == broken_id:
            raise ValueError("unexpected null aggregate")
        return real_classify(metrics, *args, **kwargs)

    monkeypatch.setattr(segmentation_service, "classify", flaky_classify)

    summary = recompute_segments(as_of=AS_OF)

    assert summary.succeeded == 2
    assert [(s.customer_id, s.reason) for s in summary.skipped] == [(broken_id, "unexpected null aggregate")]
    assert _segment(good_before.id) == SEGMENT_PROMISING
    assert _segment(broken_id) == SEGMENT_NEW
    assert _segment(good_after.id) == SEGMENT_PROMISING

    with pytest.raises(PartialBatchFailure) as excinfo:
        summary.raise_for_partial()
    assert excinfo.value.details["skipped"] == [{"customer_id": broken_id, "reason": "unexpected null aggregate"}]


def test_null_aggregates_are_rejected():
    with pytest.raises(ValueError):
        RfmMetrics.from_aggregates(1, None, 1, 100, as_of=AS_OF)


def test_cancel_keeps_labels_already_written(make_customer, make_paid_order):
    first = make_customer()
    second = make_customer()
    for customer in (first, second):
        make_paid_order(customer, total_cents=300_000, days_ago=50)

    checks = {"n": 0}

    def stop_after_first():
        checks["n"] += 1
        return checks["n"] > 1

    summary = recompute_segments(as_of=AS_OF, should_stop=stop_after_first)

    assert summary.cancelled
    assert summary.succeeded == 1
    assert _segment(first.id) == SEGMENT_PROMISING
    assert _segment(second.id) == SEGMENT_NEW


def test_single_flight_rejects_overlap_from_another_process(db_session):
    # two guards over the same lease row stand in for two worker processes
    api_worker = SingleFlight("segmentation")
    beat_worker = SingleFlight("segmentation")

    with api_worker.hold():
        assert beat_worker.active
        with pytest.raises(AlreadyRunning):
            beat_worker.acquire()

    assert not beat_worker.active
    with beat_worker.hold() as lease:
        assert not lease.lost()


def test_expired_lease_can_be_taken_over(db_session):
    crashed = SingleFlight("segmentation", ttl_seconds=-1).acquire()

    with SingleFlight("segmentation").hold():
        assert crashed.lost()


def test_cancel_stops_a_run_before_the_next_customer(make_customer, make_paid_order, monkeypatch):
    first = make_customer()
    second = make_customer()
    for customer in (first, second):
        make_paid_order(customer, total_cents=300_000, days_ago=50)

    real_classify = segmentation_service.classify

    def cancel_then_classify(metrics, *args, **kwargs):
        # cancelled from elsewhere (CLI or API) while the first customer is in progress
        segmentation_flight.cancel()
        return real_classify(metrics, *args, **kwargs)

    monkeypatch.setattr(segmentation_service, "classify", cancel_then_classify)

    summary = run_segmentation(as_of=AS_OF)

    assert summary.cancelled
    assert summary.succeeded == 1
    assert _segment(first.id) == SEGMENT_PROMISING
    assert _segment(second.id) == SEGMENT_NEW
    assert not segmentation_flight.active


def test_cancel_without_a_run(db_session):
    assert segmentation_flight.cancel() is False


def test_beat_schedule_runs_recompute_task(app):
    entry = celery_app.conf.beat_schedule["recompute-segments"]

    assert entry["task"] == recompute_segments_task.name
    assert entry["schedule"].total_seconds() == app.config["SEGMENTATION_INTERVAL_SECONDS"]


def test_recompute_task_classifies_customers(make_customer, make_paid_order):
    customer = make_customer()
    make_paid_order(customer, total_cents=5_000, days_ago=10)

    result = recompute_segments_task.apply(kwargs={"as_of": AS_OF.isoformat()}).get()

    assert result["status"] == "success"
    assert result["succeeded"] == 1
    assert _segment(customer.id) == SEGMENT_NEW


def test_recompute_task_skips_while_a_run_is_active(make_customer, make_paid_order):
    customer = make_customer()
    make_paid_order(customer, total_cents=5_000, days_ago=10)
    customer.segment = SEGMENT_LOST
    db.session.commit()

    with segmentation_flight.hold():
        result = recompute_segments_task.apply(kwargs={"as_of": AS_OF.isoformat()}).get()

    assert result == {"status": "skipped"}
    assert _segment(customer.id) == SEGMENT_LOST

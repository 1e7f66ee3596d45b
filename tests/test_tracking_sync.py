"""
Tracking sync engine tests - end-to-end refresh behaviour against a scripted provider
"""
import asyncio

import pytest

from conftest import FakeProvider, checkpoint, ok, tracking_payload
from shiptrack.models import Order, OrderStatus, TrackingHistory
from shiptrack.services.tracking_errors import InvalidOrder
from shiptrack.services.tracking_ledger import INFO_RECEIVED_DETAILS
from shiptrack.services.tracking_provider import ProviderResponse
from shiptrack.services.tracking_sync import (
    SOURCE_API,
    SOURCE_DATABASE,
    TrackingSyncEngine,
    merge_checkpoints,
    read_history,
    sync_active_orders,
    trigger_refresh,
    trigger_webhook_simulation,
)

IN_TRANSIT = checkpoint("2024-05-02T10:00:00Z", "In transit to Shah Alam hub", location="Shah Alam")
INFO = checkpoint("2024-05-01T08:00:00Z", "Shipment info received", status="info_received")
OUT_FOR_DELIVERY = checkpoint("2024-05-02T18:00:00Z", "Out for delivery")
DELIVERED = checkpoint("2024-05-03T15:30:00Z", "Delivered to recipient", status="delivered")
FAILED = ProviderResponse(ok=False, status_code=500, error="HTTP 500")


def refresh(db, provider, order_id):
    return asyncio.run(trigger_refresh(db, provider, order_id))


def history_count(db, order_id):
    return db.query(TrackingHistory).filter(TrackingHistory.order_id == order_id).count()


class TestFirstSync:
    """First and repeated syncs of an order"""

    def test_unknown_order(self, db_session):
        """Unknown order id raises InvalidOrder"""
        with pytest.raises(InvalidOrder):
            refresh(db_session, FakeProvider(), "no-such-order")

    def test_order_without_tracking_identity(self, db_session, make_order):
        """Order without tracking identity is returned unshippable without provider calls"""
        order = make_order(tracking_number=None, courier_code=None)
        provider = FakeProvider()
        result = refresh(db_session, provider, order.id)
        assert result.shippable is False
        assert result.checkpoints == []
        assert provider.calls == []
        assert history_count(db_session, order.id) == 0

    def test_first_sync_stores_and_advances(self, db_session, make_order):
        """First sync stores checkpoints and advances the order to shipped"""
        order = make_order()
        provider = FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO)))
        result = refresh(db_session, provider, order.id)

        assert result.source == SOURCE_API
        assert result.inserted == 2
        assert result.status == "shipped"
        assert result.status_changed is True
        assert result.error is None
        assert [c["details"] for c in result.checkpoints] == ["In transit to Shah Alam hub", "Shipment info received"]

        db_session.refresh(order)
        assert order.status == OrderStatus.SHIPPED
        assert order.detailed_tracking_status == "In transit to Shah Alam hub"
        assert order.shipped_at is not None
        assert order.courier_name == "Pos Laju"
        assert history_count(db_session, order.id) == 2

    def test_repeat_sync_is_idempotent(self, db_session, make_order):
        """Repeat sync with the same data writes nothing"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)
        assert result.inserted == 0
        assert result.status_changed is False
        assert result.status == "shipped"
        assert len(result.checkpoints) == 2
        assert history_count(db_session, order.id) == 2

    def test_rfc_1123_times_dedup_across_syncs(self, db_session, make_order):
        """RFC 1123 checkpoint times keep their value and dedup across syncs"""
        order = make_order()
        entry = checkpoint("Thu, 02 May 2024 10:00:00 GMT", "In transit to hub")
        first = refresh(db_session, FakeProvider(courier=ok(tracking_payload(entry))), order.id)
        second = refresh(db_session, FakeProvider(courier=ok(tracking_payload(entry))), order.id)
        assert first.inserted == 1
        assert second.inserted == 0
        assert history_count(db_session, order.id) == 1
        assert second.checkpoints[0]["time"] == "2024-05-02T10:00:00+00:00"

    def test_webhook_simulation_has_same_effects(self, db_session, make_order):
        """Webhook simulation has the same effects as a refresh"""
        order = make_order()
        result = asyncio.run(trigger_webhook_simulation(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT))), order.id))
        assert result.status == "shipped"
        assert history_count(db_session, order.id) == 1


class TestMonotonicStatus:
    """Status only moves forward"""

    def test_stale_checkpoint_does_not_regress(self, db_session, make_order):
        """An older-stage checkpoint never moves the status back"""
        order = make_order(status=OrderStatus.SHIPPED)
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(INFO))), order.id)
        assert result.status == "shipped"
        assert result.status_changed is False
        assert result.inserted == 1
        db_session.refresh(order)
        assert order.status == OrderStatus.SHIPPED

    def test_delivered_after_shipped(self, db_session, make_order):
        """Delivered checkpoint advances a shipped order"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(DELIVERED, IN_TRANSIT, INFO))), order.id)
        assert result.status == "delivered"
        assert result.inserted == 1
        db_session.refresh(order)
        assert order.delivered_at is not None
        assert order.detailed_tracking_status == "Delivered to recipient"

    def test_cancelled_order_is_never_overwritten(self, db_session, make_order):
        """Cancelled orders keep their status"""
        order = make_order(status=OrderStatus.CANCELLED)
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(DELIVERED))), order.id)
        assert result.status == "cancelled"
        assert result.status_changed is False
        assert history_count(db_session, order.id) == 1

    def test_newer_checkpoint_updates_detailed_status_without_advance(self, db_session, make_order):
        """A newer checkpoint updates the detailed status even when the status holds"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT))), order.id)
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(OUT_FOR_DELIVERY, IN_TRANSIT))), order.id)
        assert result.status == "shipped"
        assert result.status_changed is False
        db_session.refresh(order)
        assert order.status == OrderStatus.SHIPPED
        assert order.detailed_tracking_status == "Out for delivery"

    def test_stale_checkpoint_keeps_detailed_status(self, db_session, make_order):
        """A checkpoint older than stored history leaves the detailed status alone"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(DELIVERED, IN_TRANSIT))), order.id)
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT))), order.id)
        db_session.refresh(order)
        assert order.status == OrderStatus.DELIVERED
        assert order.detailed_tracking_status == "Delivered to recipient"

    def test_cancelled_order_keeps_detailed_status(self, db_session, make_order):
        """Cancelled orders keep their detailed status"""
        order = make_order(status=OrderStatus.CANCELLED, detailed_tracking_status="Cancelled by customer")
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT))), order.id)
        db_session.refresh(order)
        assert order.detailed_tracking_status == "Cancelled by customer"


class TestDegradation:
    """Provider failures degrade to saved history"""

    def test_provider_down_serves_saved_history(self, db_session, make_order):
        """Provider outage serves stored history with an error message"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)

        down = FakeProvider(register=FAILED, courier=FAILED, generic=FAILED, listing=FAILED)
        result = refresh(db_session, down, order.id)
        assert result.source == SOURCE_DATABASE
        assert "list stage failed" in result.error
        assert result.status == "shipped"
        assert [c["details"] for c in result.checkpoints] == ["In transit to Shah Alam hub", "Shipment info received"]
        assert history_count(db_session, order.id) == 2

    def test_registration_failure_is_a_warning(self, db_session, make_order):
        """Failed registration is a warning, not an error"""
        order = make_order()
        provider = FakeProvider(register=FAILED, courier=ok(tracking_payload(IN_TRANSIT)))
        result = refresh(db_session, provider, order.id)
        assert result.status == "shipped"
        assert result.warnings == [f"Registration failed for {order.tracking_number}: HTTP 500"]

    def test_tracking_without_checkpoints_records_info_received(self, db_session, make_order):
        """Tracking without checkpoints records an info-received entry"""
        order = make_order()
        provider = FakeProvider(courier=ok(tracking_payload()), generic=FAILED)
        result = refresh(db_session, provider, order.id)
        assert result.source == SOURCE_API
        assert result.inserted == 1
        assert result.status == "pending"
        assert [c["details"] for c in result.checkpoints] == [INFO_RECEIVED_DETAILS]


class TestEstimatedDelivery:
    """Delivery estimate on the sync result"""

    def test_estimate_from_earliest_checkpoint(self, db_session, make_order):
        """Estimate is the earliest checkpoint plus four days"""
        order = make_order()
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)
        assert result.estimated_delivery == "2024-05-05T08:00:00+00:00"
        assert result.to_dict()["estimatedDelivery"] == "2024-05-05T08:00:00+00:00"

    def test_no_estimate_once_delivered(self, db_session, make_order):
        """Delivered orders have no estimate"""
        order = make_order()
        result = refresh(db_session, FakeProvider(courier=ok(tracking_payload(DELIVERED, IN_TRANSIT))), order.id)
        assert result.status == "delivered"
        assert result.estimated_delivery is None


class TestRegistrationEffects:
    """Registration side effects on the order"""

    def test_short_link_is_persisted(self, db_session, make_order):
        """Short link from registration is saved on the order"""
        order = make_order()
        provider = FakeProvider(
            register=ok({"tracking": {"short_link": "https://trk.my/abc"}}, status_code=201),
            courier=ok(tracking_payload(IN_TRANSIT)),
        )
        result = refresh(db_session, provider, order.id)
        assert result.short_link == "https://trk.my/abc"
        db_session.refresh(order)
        assert order.short_link == "https://trk.my/abc"

    def test_short_link_kept_when_provider_is_down(self, db_session, make_order):
        """Short link is saved even when every query stage fails"""
        order = make_order()
        provider = FakeProvider(register=ok({"tracking": {"short_link": "https://trk.my/xyz"}}), courier=FAILED,
                                generic=FAILED, listing=FAILED)
        result = refresh(db_session, provider, order.id)
        assert result.source == SOURCE_DATABASE
        db_session.refresh(order)
        assert order.short_link == "https://trk.my/xyz"


class TestHistoryAndBatch:
    """History reads and the batch poll"""

    def test_read_history(self, db_session, make_order):
        """History read for an order, unknown order raises"""
        order = make_order()
        refresh(db_session, FakeProvider(courier=ok(tracking_payload(IN_TRANSIT, INFO))), order.id)
        history = read_history(db_session, order.id)
        assert [h["details"] for h in history] == ["In transit to Shah Alam hub", "Shipment info received"]
        with pytest.raises(InvalidOrder):
            read_history(db_session, "missing")

    def test_sync_active_orders_skips_final_and_unshippable(self, db_session, make_order):
        """Batch poll skips delivered, cancelled and unshippable orders"""
        active = make_order()
        make_order(status=OrderStatus.DELIVERED)
        make_order(status=OrderStatus.CANCELLED)
        make_order(tracking_number=None, courier_code=None)
        provider = FakeProvider(courier=ok(tracking_payload(IN_TRANSIT)))
        summary = asyncio.run(sync_active_orders(db_session, provider))
        assert summary == {"synced": 1, "advanced": 1, "errors": []}
        assert db_session.get(Order, active.id).status == OrderStatus.SHIPPED

    def test_engine_accepts_injected_orchestrator(self, db_session, make_order):
        """Engine uses an injected orchestrator instead of the provider"""
        order = make_order()

        class CannedOrchestrator:
            async def fetch_checkpoints(self, tracking_number, courier_code):
                from shiptrack.services.fetch_orchestrator import FetchResult
                from shiptrack.services.checkpoint_normalizer import normalize
                return FetchResult(checkpoints=normalize(tracking_payload(DELIVERED)))

        provider = FakeProvider()
        result = asyncio.run(TrackingSyncEngine(db_session, provider, orchestrator=CannedOrchestrator()).sync(order.id))
        assert result.status == "delivered"
        assert provider.calls == []


class TestMergeCheckpoints:
    """Live and stored checkpoint merge"""

    def test_live_wins_and_newest_first(self):
        """Live items win on duplicate keys and the merge is newest first"""
        live = [{"time": "2024-05-02T10:00:00+00:00", "details": "b", "source": "live"}]
        history = [
            {"time": "2024-05-02T10:00:00+00:00", "details": "b", "source": "db"},
            {"time": "2024-05-03T10:00:00+00:00", "details": "c"},
            {"time": "2024-05-01T10:00:00+00:00", "details": "a"},
        ]
        merged = merge_checkpoints(live, history)
        assert [m["details"] for m in merged] == ["c", "b", "a"]
        assert merged[1]["source"] == "live"

"""
Tests for the subscription manager.
"""
from datetime import datetime

import pytest

from models import db
from models.subscription import SubscriptionHistory
from models.user import User
from services import subscriptions as subscription_service
from services.errors import InvalidArgument, NotFound, StateViolation

JAN_1 = datetime(2024, 1, 1, 10, 0)


@pytest.fixture
def subscription(user, pro_plan, superadmin):
    return subscription_service.start_subscription(
        user.id, pro_plan.id, billing_cycle="monthly", actor_id=superadmin.id, start=JAN_1)


class TestStartSubscription:
    """Tests for admin-started subscriptions."""

    def test_start_sets_period_and_current(self, subscription, user):
        assert subscription.status == "active"
        assert subscription.start_date == JAN_1
        assert subscription.end_date == datetime(2024, 2, 1, 10, 0)
        assert db.session.get(User, user.id).current_subscription_id == subscription.id

    def test_yearly_cycle(self, user, pro_plan):
        sub = subscription_service.start_subscription(user.id, pro_plan.id, billing_cycle="yearly", start=JAN_1)
        assert sub.end_date == datetime(2025, 1, 1, 10, 0)

    def test_unknown_user_or_plan(self, user, pro_plan):
        with pytest.raises(NotFound):
            subscription_service.start_subscription(9999, pro_plan.id)
        with pytest.raises(NotFound):
            subscription_service.start_subscription(user.id, 9999)

    def test_unknown_billing_cycle(self, user, pro_plan):
        with pytest.raises(InvalidArgument):
            subscription_service.start_subscription(user.id, pro_plan.id, billing_cycle="weekly")


class TestActions:
    """Tests for activate, suspend, cancel and extend."""

    def test_suspend_then_activate(self, subscription, superadmin):
        subscription_service.apply_action(subscription.id, "suspend", actor_id=superadmin.id)
        assert subscription.status == "suspended"
        subscription_service.apply_action(subscription.id, "activate", actor_id=superadmin.id)
        assert subscription.status == "active"

    def test_extend_from_future_end_date(self, subscription):
        subscription_service.apply_action(subscription.id, "extend", extend_months=2, now=datetime(2024, 1, 15))
        assert subscription.end_date == datetime(2024, 4, 1, 10, 0)

    def test_extend_lapsed_counts_from_now(self, subscription):
        now = datetime(2024, 6, 15, 12, 0)
        subscription_service.apply_action(subscription.id, "extend", extend_months=2, now=now)
        assert subscription.end_date == datetime(2024, 8, 15, 12, 0)
        assert subscription.status == "active"

    def test_extend_reactivates_suspended(self, subscription):
        subscription_service.apply_action(subscription.id, "suspend")
        subscription_service.apply_action(subscription.id, "extend", extend_months=1, now=datetime(2024, 1, 15))
        assert subscription.status == "active"

    @pytest.mark.parametrize("months", [None, 0, -1, True, "2"])
    def test_extend_requires_positive_whole_months(self, subscription, months):
        with pytest.raises(InvalidArgument):
            subscription_service.apply_action(subscription.id, "extend", extend_months=months)

    def test_cancel_is_terminal(self, subscription, user):
        subscription_service.apply_action(subscription.id, "cancel")
        assert subscription.status == "cancelled"
        assert db.session.get(User, user.id).current_subscription_id is None

        for action in ("activate", "suspend", "cancel"):
            with pytest.raises(StateViolation) as excinfo:
                subscription_service.apply_action(subscription.id, action)
            assert excinfo.value.current == "cancelled"
        with pytest.raises(StateViolation):
            subscription_service.apply_action(subscription.id, "extend", extend_months=1)

    def test_unknown_action(self, subscription):
        with pytest.raises(InvalidArgument):
            subscription_service.apply_action(subscription.id, "pause")

    def test_missing_subscription(self, app):
        with pytest.raises(NotFound):
            subscription_service.apply_action(9999, "activate")

    def test_new_subscription_replaces_current(self, subscription, user, max_plan):
        newer = subscription_service.start_subscription(user.id, max_plan.id, start=datetime(2024, 1, 10))
        assert db.session.get(type(subscription), subscription.id).status == "cancelled"
        assert db.session.get(User, user.id).current_subscription_id == newer.id
        replaced = [h.action_type for h in subscription_service.history_for(subscription.id)]
        assert replaced == ["create", "replace"]


class TestHistory:
    """Tests for the append-only history log."""

    def test_every_action_is_recorded(self, subscription, superadmin):
        subscription_service.apply_action(subscription.id, "suspend", actor_id=superadmin.id)
        subscription_service.apply_action(subscription.id, "extend", extend_months=1, actor_id=superadmin.id,
                                          now=datetime(2024, 1, 20))
        subscription_service.apply_action(subscription.id, "cancel", actor_id=superadmin.id)

        history = subscription_service.history_for(subscription.id)
        assert [h.action_type for h in history] == ["create", "suspend", "extend", "cancel"]
        assert [h.resulting_status for h in history] == ["active", "suspended", "active", "cancelled"]
        assert history[2].resulting_end_date == datetime(2024, 3, 1, 10, 0)
        assert all(h.actor_id == superadmin.id for h in history)

    def test_replayed_request_is_applied_once(self, subscription):
        now = datetime(2024, 1, 15)
        subscription_service.apply_action(subscription.id, "extend", extend_months=1, request_id="req-1", now=now)
        subscription_service.apply_action(subscription.id, "extend", extend_months=1, request_id="req-1", now=now)
        assert subscription.end_date == datetime(2024, 3, 1, 10, 0)
        assert SubscriptionHistory.query.filter_by(request_id="req-1").count() == 1

    def test_request_id_reused_on_other_subscription(self, subscription, make_user, pro_plan):
        other_user = make_user("Karim")
        other = subscription_service.start_subscription(other_user.id, pro_plan.id, start=JAN_1)
        subscription_service.apply_action(subscription.id, "suspend", request_id="req-2")
        with pytest.raises(InvalidArgument):
            subscription_service.apply_action(other.id, "suspend", request_id="req-2")

    def test_history_rows_are_immutable(self, subscription):
        entry = subscription_service.history_for(subscription.id)[0]
        entry.resulting_status = "suspended"
        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()

        entry = subscription_service.history_for(subscription.id)[0]
        db.session.delete(entry)
        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()

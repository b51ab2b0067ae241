"""
Tests for the authorization policy.
"""
from types import SimpleNamespace

import pytest

from services import policy
from services.errors import PermissionDenied


class TestAdminPolicy:
    """Tests for role based admin permissions."""

    @pytest.mark.parametrize("action", ["payment.verify", "payment.approve", "payment.reject", "cron.view"])
    def test_staff_admin_handles_payments(self, staff_admin, action):
        assert policy.authorize(staff_admin, action) == policy.ALLOW

    @pytest.mark.parametrize("action", ["subscription.manage", "subscription.create", "payment.delete", "cron.trigger"])
    def test_superadmin_only_actions(self, staff_admin, superadmin, action):
        assert policy.authorize(staff_admin, action) == policy.DENY
        assert policy.authorize(superadmin, action) == policy.ALLOW

    def test_unknown_action_denied(self, superadmin):
        assert policy.authorize(superadmin, "obligation.create") == policy.DENY

    def test_inactive_admin_denied(self, superadmin):
        superadmin.is_active = False
        assert policy.authorize(superadmin, "payment.view") == policy.DENY


class TestUserPolicy:
    """Tests for user permissions on owned resources."""

    def test_owner_may_act_on_own_template(self, user):
        template = SimpleNamespace(user_id=user.id)
        assert policy.authorize(user, "obligation.update", template) == policy.ALLOW

    def test_other_users_resource_denied(self, make_user):
        owner, intruder = make_user("Owner"), make_user("Intruder")
        template = SimpleNamespace(user_id=owner.id)
        assert policy.authorize(intruder, "obligation.delete", template) == policy.DENY

    def test_owned_action_without_resource_denied(self, user):
        assert policy.authorize(user, "obligation.view") == policy.DENY

    def test_unowned_actions(self, user):
        assert policy.authorize(user, "payment.submit") == policy.ALLOW
        assert policy.authorize(user, "obligation.create") == policy.ALLOW

    def test_users_cannot_use_admin_actions(self, user):
        assert policy.authorize(user, "payment.approve") == policy.DENY
        assert policy.authorize(user, "cron.trigger") == policy.DENY

    def test_anonymous_denied(self):
        assert policy.authorize(None, "payment.submit") == policy.DENY

    def test_require_raises(self, user):
        with pytest.raises(PermissionDenied):
            policy.require(user, "subscription.manage")

"""
Authorization policy for mutating and reading engine operations.

Routes call ``require`` before touching any entity; the check runs against
the actor object itself and never against the database.
"""
from models.admin import Admin
from models.user import User
from services.errors import PermissionDenied

ALLOW = 'allow'
DENY = 'deny'

# action -> roles allowed to perform it
ADMIN_PERMISSIONS = {
    'payment.view': ('superadmin', 'admin'),
    'payment.verify': ('superadmin', 'admin'),
    'payment.approve': ('superadmin', 'admin'),
    'payment.reject': ('superadmin', 'admin'),
    'payment.delete': ('superadmin',),
    'subscription.view': ('superadmin', 'admin'),
    'subscription.manage': ('superadmin',),
    'subscription.create': ('superadmin',),
    'cron.view': ('superadmin', 'admin'),
    'cron.trigger': ('superadmin',),
    'coupon.view': ('superadmin', 'admin'),
    'coupon.manage': ('superadmin',),
}

# Actions a user may perform; those in OWNED_ACTIONS need a resource they own
USER_PERMISSIONS = {
    'payment.submit',
    'payment.view',
    'coupon.validate',
    'subscription.view',
    'obligation.create',
    'obligation.preview',
    'obligation.view',
    'obligation.update',
    'obligation.pause',
    'obligation.resume',
    'obligation.delete',
    'notification.view',
    'notification.read',
}
OWNED_ACTIONS = USER_PERMISSIONS - {'payment.submit', 'coupon.validate', 'obligation.create', 'obligation.preview'}


def authorize(actor, action, resource=None):
    """Return ALLOW or DENY for ``actor`` performing ``action`` on ``resource``"""
    if actor is None or not getattr(actor, 'is_active', False):
        return DENY

    if isinstance(actor, Admin):
        roles = ADMIN_PERMISSIONS.get(action)
        return ALLOW if roles and actor.role in roles else DENY

    if isinstance(actor, User):
        if action not in USER_PERMISSIONS:
            return DENY
        if action in OWNED_ACTIONS:
            if resource is None or getattr(resource, 'user_id', None) != actor.id:
                return DENY
        return ALLOW

    return DENY


def require(actor, action, resource=None):
    """Raise PermissionDenied unless ``authorize`` allows the action"""
    if authorize(actor, action, resource) != ALLOW:
        raise PermissionDenied(f'Not allowed to perform {action}')

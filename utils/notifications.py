"""
Notification dispatcher: turns engine events into in-app notifications.

Events have the shape ``{type, title, body, target_url}``. Delivery beyond
the in-app row (and the optional subscription email) belongs to whatever
consumes the notifications table.
"""
from dataclasses import dataclass, asdict

from flask import current_app

from models import db
from models.notification import Notification

SUBSCRIPTION_URL = '/dashboard/subscription'
LOANS_URL = '/dashboard/credit/loans'


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    title: str
    body: str
    target_url: str = None

    def to_dict(self):
        return asdict(self)


def dispatch(user_id, event, commit=False):
    """
    Record a notification for a user.

    Args:
        user_id: Recipient user ID (None for admin-wide notices)
        event: NotificationEvent
        commit: Commit immediately. Leave False to make the notification
            part of the caller's transaction.

    Returns:
        Notification object, or None if an immediate commit failed
    """
    notification = Notification(
        user_id=user_id,
        type=event.type,
        title=event.title,
        body=event.body,
        target_url=event.target_url,
        is_read=False,
    )
    db.session.add(notification)
    if not commit:
        return notification
    try:
        db.session.commit()
        return notification
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create notification: {str(e)}", exc_info=True)
        return None


def _format_amount(amount, currency):
    return f"{currency} {float(amount):,.2f}"


def payment_pending_event(payment):
    plan_name = payment.plan.display_name if payment.plan else 'your plan'
    return NotificationEvent(
        type='subscription',
        title='Payment Received',
        body=(f"Your payment of {_format_amount(payment.final_amount, payment.currency)} for {plan_name} "
              f"is pending verification (ref {payment.transaction_reference})."),
        target_url=SUBSCRIPTION_URL,
    )


def payment_approved_event(payment, subscription):
    plan_name = payment.plan.display_name if payment.plan else 'your plan'
    end = subscription.end_date.strftime('%d %b %Y') if subscription.end_date else 'further notice'
    return NotificationEvent(
        type='subscription',
        title='Subscription Activated',
        body=f"Your payment was approved. {plan_name} is active until {end}.",
        target_url=SUBSCRIPTION_URL,
    )


def payment_rejected_event(payment):
    body = f"Your payment (ref {payment.transaction_reference}) was rejected."
    if payment.rejection_reason:
        body += f" Reason: {payment.rejection_reason}"
    return NotificationEvent(type='subscription', title='Payment Rejected', body=body, target_url=SUBSCRIPTION_URL)


def emi_due_event(template, due_date):
    return NotificationEvent(
        type='emi',
        title='EMI Due',
        body=(f"{template.name}: installment of {_format_amount(template.amount, template.currency)} "
              f"is due on {due_date.strftime('%d %b %Y')}."),
        target_url=LOANS_URL,
    )


def emi_upcoming_event(template, due_date):
    return NotificationEvent(
        type='emi',
        title='Upcoming EMI',
        body=(f"{template.name}: {_format_amount(template.amount, template.currency)} "
              f"will be due on {due_date.strftime('%d %b %Y')}."),
        target_url=LOANS_URL,
    )


def notify_payment_outcome(payment, subscription=None):
    """Notify a user that their payment was approved or rejected (after commit)"""
    if payment.status == 'approved':
        event = payment_approved_event(payment, subscription)
    else:
        event = payment_rejected_event(payment)
    notification = dispatch(payment.user_id, event, commit=True)

    if current_app.config.get('NOTIFICATION_EMAILS_ENABLED') and payment.user:
        try:
            from utils.mail import send_notification_email
            send_notification_email(payment.user, event)
        except Exception as e:
            current_app.logger.error(f"Failed to email payment outcome for payment #{payment.id}: {str(e)}", exc_info=True)
    return notification

"""
Email utility functions
"""
from flask_mail import Mail, Message
from flask import current_app

mail = Mail()

def send_email(subject, recipients, body, html=None):
    """
    Send an email
    
    Args:
        subject: Email subject
        recipients: List of recipient email addresses
        body: Plain text body
        html: HTML body (optional)
    """
    msg = Message(
        subject=subject,
        recipients=recipients,
        body=body,
        html=html
    )
    mail.send(msg)


def send_notification_email(user, event):
    """
    Email a notification event to a user.

    Args:
        user: User object
        event: NotificationEvent
    """
    if not current_app.config.get('MAIL_SERVER'):
        raise RuntimeError("MAIL_SERVER not configured. Please set MAIL_SERVER environment variable.")

    subject = f"{event.title} - Fintrack"
    body = f"""
Hello {user.full_name},

{event.body}

Best regards,
Fintrack Team
"""
    try:
        send_email(subject, [user.email], body, html=_notification_email_html(user.full_name, event))
    except Exception as e:
        current_app.logger.error(f"SMTP error sending notification email to {user.email}: {str(e)}", exc_info=True)
        raise


def _notification_email_html(name: str, event) -> str:
    """Minimal HTML template for notification emails."""
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: Arial, sans-serif; color: #1f2937;">
        <h2 style="color: #111827;">{event.title}</h2>
        <p>Hello {name},</p>
        <p>{event.body}</p>
        <p style="color: #6b7280; font-size: 12px;">Fintrack Team</p>
    </body>
    </html>
    """

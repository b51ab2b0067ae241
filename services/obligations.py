"""
Recurring obligation template management (create, edit, pause/resume, preview)
"""
import logging
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.obligation import FREQUENCIES, OBLIGATION_KINDS, RecurringObligationTemplate
from models.transaction import Transaction
from services import schedule
from services.errors import InvalidArgument, NotFound, ObligationError, PersistenceFailure, StateViolation

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'amount', 'currency', 'frequency', 'anchor_date', 'end_date', 'tenure_remaining', 'auto_debit')
MAX_PREVIEW = 60


def parse_date(value, field):
    """Accept a date or an ISO ``YYYY-MM-DD`` string"""
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidArgument(f'{field} must be a date in YYYY-MM-DD format')


def _parse_amount(value):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument('amount must be a number')
    if amount <= 0:
        raise InvalidArgument('amount must be greater than zero')
    return amount


def _validate_frequency(frequency):
    if frequency not in FREQUENCIES:
        raise InvalidArgument(f'Unknown frequency: {frequency}')


def _validate_tenure(tenure):
    if tenure is None:
        return None
    try:
        tenure = int(tenure)
    except (TypeError, ValueError):
        raise InvalidArgument('tenure must be a whole number')
    if tenure < 0:
        raise InvalidArgument('tenure must not be negative')
    return tenure


def _settle_exhaustion(template):
    """Deactivate a template that has no occurrence left"""
    next_date = template.next_execution_date
    out_of_tenure = template.tenure_remaining is not None and template.tenure_remaining <= 0
    past_end = next_date is not None and template.end_date is not None and next_date > template.end_date
    if out_of_tenure or past_end:
        template.next_execution_date = None
        template.is_active = False


def get_template(template_id):
    template = db.session.get(RecurringObligationTemplate, template_id)
    if template is None:
        raise NotFound('obligation', template_id)
    return template


def list_for_user(user_id, kind=None):
    query = RecurringObligationTemplate.query.filter_by(user_id=user_id)
    if kind:
        query = query.filter_by(kind=kind)
    return query.order_by(RecurringObligationTemplate.created_at.desc(), RecurringObligationTemplate.id.desc()).all()


def upcoming_for_user(user_id, as_of, days=30):
    """Active templates falling due within ``days`` of ``as_of``"""
    return (RecurringObligationTemplate.query
            .filter(RecurringObligationTemplate.user_id == user_id,
                    RecurringObligationTemplate.is_active.is_(True),
                    RecurringObligationTemplate.next_execution_date.isnot(None),
                    RecurringObligationTemplate.next_execution_date <= as_of + timedelta(days=days))
            .order_by(RecurringObligationTemplate.next_execution_date)
            .all())


def _commit(action):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure(f'Could not {action} obligation', e)


def create_template(user, kind, name, amount, frequency, anchor_date, currency='BDT',
                    end_date=None, tenure=None, auto_debit=False):
    """Create a template whose first occurrence is its anchor date"""
    if kind not in OBLIGATION_KINDS:
        raise InvalidArgument(f'Unknown obligation kind: {kind}')
    _validate_frequency(frequency)
    name = (name or '').strip()
    if not name:
        raise InvalidArgument('name is required')
    anchor = parse_date(anchor_date, 'anchor_date')
    if anchor is None:
        raise InvalidArgument('anchor_date is required')
    end = parse_date(end_date, 'end_date')
    if end is not None and end < anchor:
        raise InvalidArgument('end_date must not be before anchor_date')
    tenure = _validate_tenure(tenure)
    if tenure == 0:
        raise InvalidArgument('tenure must be at least 1')

    template = RecurringObligationTemplate(
        user_id=user.id,
        kind=kind,
        name=name,
        amount=_parse_amount(amount),
        currency=currency,
        frequency=frequency,
        anchor_date=anchor,
        next_execution_date=anchor,
        is_active=True,
        executed_count=0,
        end_date=end,
        tenure_remaining=tenure,
        auto_debit=bool(auto_debit) and kind == 'loan_emi',
    )
    db.session.add(template)
    _commit('create')
    logger.info("Obligation template #%s (%s, %s) created for user #%s", template.id, kind, frequency, user.id)
    return template


def update_template(template, **changes):
    """
    Edit a template. Changing the frequency or anchor recomputes the next
    occurrence from the anchor, skipping periods already executed.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidArgument(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    try:
        if 'name' in changes:
            name = (changes['name'] or '').strip()
            if not name:
                raise InvalidArgument('name is required')
            template.name = name
        if 'amount' in changes:
            template.amount = _parse_amount(changes['amount'])
        if 'currency' in changes and changes['currency']:
            template.currency = changes['currency']
        if 'auto_debit' in changes:
            template.auto_debit = bool(changes['auto_debit']) and template.kind == 'loan_emi'
        if 'tenure_remaining' in changes:
            template.tenure_remaining = _validate_tenure(changes['tenure_remaining'])

        reschedule = False
        if 'frequency' in changes and changes['frequency'] != template.frequency:
            _validate_frequency(changes['frequency'])
            template.frequency = changes['frequency']
            reschedule = True
        if 'anchor_date' in changes:
            anchor = parse_date(changes['anchor_date'], 'anchor_date')
            if anchor is None:
                raise InvalidArgument('anchor_date is required')
            if anchor != template.anchor_date:
                template.anchor_date = anchor
                reschedule = True
        if 'end_date' in changes:
            end = parse_date(changes['end_date'], 'end_date')
            if end is not None and end < template.anchor_date:
                raise InvalidArgument('end_date must not be before anchor_date')
            template.end_date = end

        # An exhausted template gets its schedule back when its end or tenure is extended
        if template.next_execution_date is None and ('end_date' in changes or 'tenure_remaining' in changes):
            reschedule = True

        if reschedule:
            following = schedule.occurrence_after(
                template.anchor_date, template.frequency, template.executed_count or 0)
            # Never hand back a period on or before one already booked
            while template.last_executed_date is not None and following <= template.last_executed_date:
                following = schedule.next_occurrence(following, template.frequency)
            template.next_execution_date = following
        _settle_exhaustion(template)
    except ObligationError:
        db.session.rollback()
        raise

    _commit('update')
    return template


def pause(template):
    """Stop executing without touching the schedule"""
    template.is_active = False
    _commit('pause')
    return template


def resume(template):
    if template.next_execution_date is None:
        raise StateViolation('obligation', 'exhausted', 'resume')
    template.is_active = True
    _commit('resume')
    return template


def delete_template(template):
    """Delete a template; its ledger rows stay, detached from it"""
    try:
        Transaction.query.filter_by(template_id=template.id).update(
            {'template_id': None}, synchronize_session=False)
        db.session.delete(template)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure('Could not delete obligation', e)


def preview(anchor_date, frequency, count=6, end_date=None):
    """Upcoming occurrence dates for a would-be template"""
    _validate_frequency(frequency)
    anchor = parse_date(anchor_date, 'anchor_date')
    if anchor is None:
        raise InvalidArgument('anchor_date is required')
    if count < 1 or count > MAX_PREVIEW:
        raise InvalidArgument(f'count must be between 1 and {MAX_PREVIEW}')
    return schedule.upcoming_occurrences(anchor, frequency, count, parse_date(end_date, 'end_date'))

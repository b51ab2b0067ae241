"""
Tests for recurring obligation template management.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from services import obligations as obligation_service
from services.errors import InvalidArgument, StateViolation
from services.scheduler import RecurringExecutionScheduler


class TestCreateTemplate:
    """Tests for template creation."""

    def test_first_occurrence_is_anchor(self, user):
        template = obligation_service.create_template(
            user, "sip", "Index fund", "5000", "monthly", "2024-03-05")
        assert template.next_execution_date == date(2024, 3, 5)
        assert template.amount == Decimal("5000.00")
        assert template.is_active is True
        assert template.executed_count == 0

    def test_auto_debit_only_for_loans(self, user):
        template = obligation_service.create_template(
            user, "transaction", "Rent", "20000", "monthly", date(2024, 3, 1), auto_debit=True)
        assert template.auto_debit is False

    @pytest.mark.parametrize("kind,amount,frequency,tenure", [
        ("salary", "100", "monthly", None),
        ("transaction", "-5", "monthly", None),
        ("transaction", "abc", "monthly", None),
        ("transaction", "100", "fortnightly", None),
        ("loan_emi", "100", "monthly", 0),
    ])
    def test_invalid_input(self, user, kind, amount, frequency, tenure):
        with pytest.raises(InvalidArgument):
            obligation_service.create_template(user, kind, "x", amount, frequency, "2024-03-01", tenure=tenure)

    def test_end_before_anchor(self, user):
        with pytest.raises(InvalidArgument):
            obligation_service.create_template(
                user, "transaction", "Gym", "1500", "monthly", "2024-03-01", end_date="2024-02-01")


class TestUpdateTemplate:
    """Tests for edits that touch the schedule."""

    def test_frequency_change_skips_executed_periods(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 1))
        RecurringExecutionScheduler(clock=lambda: datetime(2024, 1, 1, 9, 0)).run_once()

        template = obligation_service.update_template(obligation_service.get_template(template.id), frequency="weekly")
        assert template.executed_count == 1
        assert template.next_execution_date == date(2024, 1, 8)

    def test_shorter_frequency_never_lands_before_last_execution(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 1))
        for day in (date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)):
            RecurringExecutionScheduler(clock=lambda: datetime.combine(day, datetime.min.time())).run_once()

        template = obligation_service.update_template(obligation_service.get_template(template.id), frequency="weekly")
        assert template.last_executed_date == date(2024, 3, 1)
        assert template.executed_count == 3
        # Three weekly steps from Jan 1 would be Jan 22, already behind the Mar 1 booking
        assert template.next_execution_date == date(2024, 3, 4)

    def test_extending_tenure_revives_exhausted_template(self, user, make_template):
        template = make_template(user, kind="loan_emi", frequency="monthly", anchor=date(2024, 1, 1),
                                 tenure=1, auto_debit=True)
        RecurringExecutionScheduler(clock=lambda: datetime(2024, 1, 1, 9, 0)).run_once()
        template = obligation_service.get_template(template.id)
        assert template.next_execution_date is None

        template = obligation_service.update_template(template, tenure_remaining=2)
        assert template.next_execution_date == date(2024, 2, 1)

        obligation_service.resume(template)
        assert template.is_active is True

    def test_shortening_end_date_exhausts(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 1))
        RecurringExecutionScheduler(clock=lambda: datetime(2024, 1, 1, 9, 0)).run_once()

        template = obligation_service.update_template(
            obligation_service.get_template(template.id), end_date="2024-01-15")
        assert template.next_execution_date is None
        assert template.is_active is False

    def test_resume_exhausted_template(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 1), end_date=date(2024, 1, 1))
        RecurringExecutionScheduler(clock=lambda: datetime(2024, 1, 1, 9, 0)).run_once()
        with pytest.raises(StateViolation):
            obligation_service.resume(obligation_service.get_template(template.id))


class TestUpcoming:
    """Tests for the upcoming obligations view."""

    def test_upcoming_within_window(self, user, make_template):
        soon = make_template(user, anchor=date(2024, 2, 10))
        make_template(user, anchor=date(2024, 4, 1))
        upcoming = obligation_service.upcoming_for_user(user.id, date(2024, 2, 1), days=30)
        assert [t.id for t in upcoming] == [soon.id]

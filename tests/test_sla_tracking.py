"""Unit tests for SLA policy resolution and the SLA tracker state machine"""
import logging
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from agency_desk.tickets.domain import (
    DefaultPolicyConfig,
    EngineConfig,
    EscalationRule,
    SLAPolicyConfig,
    SLAPolicyResolver,
    SLATargets,
    SLATracking,
)

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_tracking(created_at=NOW, first_response_minutes=60, resolution_minutes=480) -> SLATracking:
    targets = SLATargets.from_minutes(first_response_minutes, resolution_minutes)
    return SLATracking.start("ticket-1", created_at, targets)


class TestSLAPolicyResolver:
    @pytest.fixture
    def config(self):
        return EngineConfig(
            sla_policies=[
                SLAPolicyConfig(department_id="billing", priority="high",
                                first_response_minutes=30, resolution_minutes=240),
                SLAPolicyConfig(priority="high", first_response_minutes=90, resolution_minutes=600),
                SLAPolicyConfig(department_id="billing", priority="low", first_response_minutes=5,
                                resolution_minutes=10, is_active=False),
            ],
            default_policy=DefaultPolicyConfig(first_response_minutes=120, resolution_minutes=960),
        )

    def test_department_policy_wins(self, config):
        targets = SLAPolicyResolver.resolve(config, "billing", "high")

        assert targets.first_response == timedelta(minutes=30)
        assert targets.resolution == timedelta(minutes=240)
        assert not targets.is_default

    def test_department_agnostic_policy(self, config):
        targets = SLAPolicyResolver.resolve(config, "support", "high")

        assert targets.first_response == timedelta(minutes=90)

    def test_missing_policy_falls_back_to_default(self, config, caplog):
        with caplog.at_level(logging.WARNING):
            targets = SLAPolicyResolver.resolve(config, "support", "medium")

        assert targets.is_default
        assert targets.first_response == timedelta(minutes=120)
        assert targets.resolution == timedelta(minutes=960)
        assert "Falling back to default SLA policy" in caplog.text

    def test_inactive_policy_is_ignored(self, config):
        targets = SLAPolicyResolver.resolve(config, "billing", "low")

        assert targets.is_default

    def test_empty_config_uses_built_in_default(self):
        targets = SLAPolicyResolver.resolve(EngineConfig(), "any", "urgent")

        assert targets.first_response == timedelta(minutes=60)
        assert targets.resolution == timedelta(minutes=480)

    def test_targets_must_be_positive(self):
        with pytest.raises(ValidationError):
            SLAPolicyConfig(priority="high", first_response_minutes=0, resolution_minutes=60)

    def test_unknown_priority_rejected(self):
        with pytest.raises(ValidationError):
            SLAPolicyConfig(priority="critical", first_response_minutes=10, resolution_minutes=60)
        with pytest.raises(ValidationError):
            EscalationRule(priority="p1", hours_without_response=1, escalate_to_agent_id="x")


class TestSLATracking:
    def test_start_computes_due_times(self):
        tracking = make_tracking()

        assert tracking.first_response_due_at == NOW + timedelta(minutes=60)
        assert tracking.resolution_due_at == NOW + timedelta(minutes=480)
        assert not tracking.first_response_breached
        assert not tracking.resolution_breached

    def test_unanswered_ticket_breaches_on_evaluation(self):
        tracking = make_tracking(created_at=NOW - timedelta(minutes=90))

        assert tracking.evaluate_breaches(NOW) is True
        assert tracking.first_response_breached
        assert not tracking.resolution_breached

    def test_evaluation_before_due_time_changes_nothing(self):
        tracking = make_tracking()

        assert tracking.evaluate_breaches(NOW + timedelta(minutes=59)) is False
        assert not tracking.is_any_breached

    def test_first_response_is_recorded_once(self):
        tracking = make_tracking()
        first = NOW + timedelta(minutes=10)

        assert tracking.record_first_response(first) is False
        tracking.record_first_response(first + timedelta(minutes=5))

        assert tracking.first_response_at == first

    def test_late_response_is_reported_but_does_not_flip_flag(self):
        tracking = make_tracking()

        late = tracking.record_first_response(NOW + timedelta(minutes=61))

        assert late is True
        assert not tracking.first_response_breached

    def test_response_in_time_stops_first_response_clock(self):
        tracking = make_tracking()
        tracking.record_first_response(NOW + timedelta(minutes=30))

        tracking.evaluate_breaches(NOW + timedelta(hours=2))

        assert not tracking.first_response_breached

    def test_resolution_stops_resolution_clock(self):
        tracking = make_tracking()
        tracking.record_first_response(NOW + timedelta(minutes=5))
        tracking.record_resolution(NOW + timedelta(hours=1))

        tracking.evaluate_breaches(NOW + timedelta(days=2))

        assert not tracking.resolution_breached

    def test_breach_flags_are_never_cleared(self):
        """Regression guard: no later event may reset a breach flag."""
        tracking = make_tracking(created_at=NOW - timedelta(hours=10))
        tracking.evaluate_breaches(NOW)
        assert tracking.first_response_breached
        assert tracking.resolution_breached

        tracking.record_first_response(NOW)
        tracking.record_resolution(NOW)
        tracking.reopen()
        tracking.record_resolution(NOW + timedelta(minutes=1))
        changed = tracking.evaluate_breaches(NOW + timedelta(minutes=2))

        assert changed is False
        assert tracking.first_response_breached
        assert tracking.resolution_breached

    def test_reopen_restarts_resolution_clock(self):
        tracking = make_tracking()
        tracking.record_resolution(NOW + timedelta(hours=1))

        tracking.reopen()
        tracking.evaluate_breaches(NOW + timedelta(hours=9))

        assert tracking.resolution_at is None
        assert tracking.resolution_breached

    def test_next_pending_deadline(self):
        tracking = make_tracking()
        assert tracking.next_pending_deadline() == tracking.first_response_due_at

        tracking.record_first_response(NOW)
        assert tracking.next_pending_deadline() == tracking.resolution_due_at

        tracking.record_resolution(NOW)
        assert tracking.next_pending_deadline() is None


class TestSLABadge:
    def test_first_response_overdue(self):
        tracking = make_tracking(created_at=NOW - timedelta(minutes=90))
        tracking.evaluate_breaches(NOW)

        badge = tracking.badge("in_progress", NOW)

        assert badge.kind == "first_response_overdue"
        assert badge.label == "Primeira Resposta Atrasada"

    def test_first_response_due_soon(self):
        tracking = make_tracking(created_at=NOW - timedelta(minutes=15))

        badge = tracking.badge("open", NOW)

        assert badge.kind == "first_response_urgent"
        assert badge.label == "Responder em 45min"
        assert badge.minutes_remaining == 45

    def test_first_response_on_track(self):
        tracking = make_tracking(first_response_minutes=180)

        badge = tracking.badge("open", NOW)

        assert badge.kind == "first_response_on_track"
        assert badge.label == "Responder até 15/01 15:00"

    def test_resolution_due_soon(self):
        tracking = make_tracking(created_at=NOW - timedelta(hours=6))
        tracking.record_first_response(NOW - timedelta(hours=5, minutes=30))

        badge = tracking.badge("in_progress", NOW)

        assert badge.kind == "resolution_urgent"
        assert badge.label == "Resolver em 2h"

    def test_resolution_on_track(self):
        tracking = make_tracking(created_at=NOW - timedelta(hours=1))
        tracking.record_first_response(NOW - timedelta(minutes=30))

        badge = tracking.badge("waiting", NOW)

        assert badge.kind == "resolution_on_track"
        assert badge.label == "Resolver até 15/01 19:00"

    def test_resolution_overdue(self):
        tracking = make_tracking(created_at=NOW - timedelta(hours=9))
        tracking.record_first_response(NOW - timedelta(hours=8, minutes=30))

        badge = tracking.badge("in_progress", NOW)

        assert badge.kind == "resolution_overdue"
        assert badge.label == "SLA de Resolução Atrasado"

    @pytest.mark.parametrize("status", ["resolved", "closed"])
    def test_terminal_ticket_reports_outcome(self, status):
        held = make_tracking()
        missed = make_tracking(created_at=NOW - timedelta(days=1))
        missed.evaluate_breaches(NOW)

        assert held.badge(status, NOW).label == "SLA OK"
        assert missed.badge(status, NOW).label == "SLA Estourado"

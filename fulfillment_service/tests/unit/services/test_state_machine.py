"""
Unit tests for the fulfillment transition tables.
"""

import pytest

from fulfillment_service.app.core.exceptions import (
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
)
from fulfillment_service.app.models.payout import PayoutStatus
from fulfillment_service.app.models.return_request import ReturnStatus
from fulfillment_service.app.services.results import Actor, Role
from fulfillment_service.app.services.state_machine import (
    ITEM_TRANSITIONS,
    PAYOUT_TRANSITIONS,
    RETURN_TRANSITIONS,
    derive_order_status,
    ensure_item_actor,
    ensure_item_transition,
    ensure_transition,
)

VENDOR = Actor(user_id=201, role=Role.VENDOR)
AGENT = Actor(user_id=301, role=Role.AGENT)
ADMIN = Actor(user_id=1, role=Role.ADMIN)


class TestItemTransitions:
    """Forward-only item lifecycle."""

    @pytest.mark.parametrize(
        "current,requested",
        [
            ("pending", "processing"),
            ("processing", "shipped"),
            ("processing", "ready_for_pickup"),
            ("shipped", "ready_for_pickup"),
            ("shipped", "delivered"),
            ("ready_for_pickup", "delivered"),
            ("pending", "cancelled"),
        ],
    )
    def test_allowed_edges(self, current, requested):
        ensure_item_transition(current, requested)

    @pytest.mark.parametrize(
        "current,requested",
        [
            ("pending", "delivered"),
            ("pending", "shipped"),
            ("delivered", "processing"),
            ("cancelled", "pending"),
            ("shipped", "processing"),
            ("delivered", "cancelled"),
        ],
    )
    def test_skips_and_backward_moves_rejected(self, current, requested):
        with pytest.raises(PreconditionFailed) as exc_info:
            ensure_item_transition(current, requested)

        assert exc_info.value.reason == "invalid_transition"
        assert exc_info.value.details["current_status"] == current
        assert "allowed_statuses" in exc_info.value.details

    def test_unknown_status_is_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            ensure_item_transition("pending", "teleported")

        assert exc_info.value.reason == "unknown_status"

    def test_terminal_states_have_no_exits(self):
        terminal = [status for status, targets in ITEM_TRANSITIONS.items() if not targets]
        assert {status.value for status in terminal} == {"delivered", "cancelled"}


class TestItemActors:
    def test_owning_vendor_prepares_items(self):
        ensure_item_actor(VENDOR, 201, 301, "pending", "processing")
        ensure_item_actor(VENDOR, 201, 301, "processing", "ready_for_pickup")
        ensure_item_actor(VENDOR, 201, 301, "processing", "cancelled")

    def test_other_vendor_rejected(self):
        with pytest.raises(PermissionDenied):
            ensure_item_actor(VENDOR, 999, 301, "pending", "processing")

    def test_vendor_cannot_mark_delivered(self):
        with pytest.raises(PermissionDenied):
            ensure_item_actor(VENDOR, 201, 301, "shipped", "delivered")

    def test_assigned_agent_receives_and_delivers(self):
        ensure_item_actor(AGENT, 201, 301, "shipped", "ready_for_pickup")
        ensure_item_actor(AGENT, 201, 301, "ready_for_pickup", "delivered")

    def test_unassigned_agent_rejected(self):
        with pytest.raises(PermissionDenied):
            ensure_item_actor(AGENT, 201, None, "shipped", "ready_for_pickup")

    def test_admin_may_take_any_edge(self):
        ensure_item_actor(ADMIN, 201, None, "shipped", "delivered")


class TestGenericTransitions:
    def test_return_decided_once(self):
        ensure_transition(RETURN_TRANSITIONS, "pending", "approved", "return")
        with pytest.raises(PreconditionFailed):
            ensure_transition(RETURN_TRANSITIONS, "rejected", "approved", "return")

    def test_return_completion_requires_approval(self):
        with pytest.raises(PreconditionFailed):
            ensure_transition(RETURN_TRANSITIONS, "pending", "completed", "return")
        ensure_transition(
            RETURN_TRANSITIONS, ReturnStatus.APPROVED.value, ReturnStatus.COMPLETED.value, "return"
        )

    def test_payout_terminal_states(self):
        for terminal in (PayoutStatus.COMPLETED.value, PayoutStatus.FAILED.value):
            with pytest.raises(PreconditionFailed):
                ensure_transition(PAYOUT_TRANSITIONS, terminal, "processing", "payout")

    def test_unknown_payout_status(self):
        with pytest.raises(ValidationError):
            ensure_transition(PAYOUT_TRANSITIONS, "pending", "sent", "payout")


class TestDeriveOrderStatus:
    def test_uniform_lines(self):
        assert derive_order_status(["shipped", "shipped"]) == "shipped"

    def test_cancelled_lines_ignored_while_one_is_live(self):
        assert derive_order_status(["cancelled", "delivered"]) == "delivered"

    def test_all_cancelled(self):
        assert derive_order_status(["cancelled", "cancelled"]) == "cancelled"

    def test_disagreeing_lines_are_mixed(self):
        assert derive_order_status(["processing", "shipped"]) is None

    def test_no_lines(self):
        assert derive_order_status([]) is None

# Overview: Pytest coverage for the order status machine and its role allowlist.

"""
Order Status Machine Tests

For every (source, target, role) combination:
- pair not in the transition table -> IllegalTransitionError, whatever the role
- pair in the table, role not allowed -> ForbiddenError
- pair in the table, role allowed -> accepted
"""

import itertools

import pytest

from storefront.errors import ForbiddenError, IllegalTransitionError, ValidationError
from storefront.models.auth import ROLE_RIDER, ROLE_SUPER_ADMIN, ROLE_USER, ROLE_VENDOR_ADMIN, VALID_ROLES
from storefront.services.order_status import (
    ORDER_STATUS_TRANSITIONS,
    STOCK_RESTORING_STATUSES,
    TERMINAL_STATUSES,
    TRANSITION_ROLES,
    VALID_ORDER_STATUSES,
    allowed_roles,
    can_transition,
    check_transition,
)


ALL_PAIRS = list(itertools.product(sorted(VALID_ORDER_STATUSES), repeat=2))
LEGAL_PAIRS = [(s, t) for s, t in ALL_PAIRS if can_transition(s, t)]
ILLEGAL_PAIRS = [(s, t) for s, t in ALL_PAIRS if not can_transition(s, t)]


class TestTransitionTable:
    def test_table_matches_documented_graph(self):
        assert ORDER_STATUS_TRANSITIONS["PENDING"] == {"ACCEPTED", "CANCELLED", "REJECTED", "FAILED"}
        assert ORDER_STATUS_TRANSITIONS["ACCEPTED"] == {"READY_FOR_PICKUP", "CANCELLED"}
        assert ORDER_STATUS_TRANSITIONS["READY_FOR_PICKUP"] == {"PICKED_UP", "CANCELLED"}
        assert ORDER_STATUS_TRANSITIONS["PICKED_UP"] == {"ARRIVED", "DELIVERED", "CANCELLED"}
        assert ORDER_STATUS_TRANSITIONS["ARRIVED"] == {"DELIVERED", "CANCELLED"}
        assert ORDER_STATUS_TRANSITIONS["RETURN"] == {"RETURNED"}
        assert len(LEGAL_PAIRS) == 14

    def test_terminal_states(self):
        assert TERMINAL_STATUSES == {"DELIVERED", "CANCELLED", "REJECTED", "RETURNED", "FAILED"}

    def test_every_legal_pair_has_an_allowlist(self):
        assert set(TRANSITION_ROLES) == set(LEGAL_PAIRS)

    def test_user_never_a_transition_actor(self):
        for roles in TRANSITION_ROLES.values():
            assert ROLE_USER not in roles

    def test_super_admin_listed_explicitly_everywhere(self):
        for roles in TRANSITION_ROLES.values():
            assert ROLE_SUPER_ADMIN in roles

    def test_stock_restoring_statuses(self):
        assert STOCK_RESTORING_STATUSES == {"CANCELLED", "REJECTED", "RETURNED", "FAILED"}


class TestCheckTransition:
    @pytest.mark.parametrize("source,target", ILLEGAL_PAIRS)
    def test_illegal_pairs_rejected_for_every_role(self, source, target):
        for role in sorted(VALID_ROLES):
            with pytest.raises(IllegalTransitionError):
                check_transition(source, target, role)

    @pytest.mark.parametrize("source,target", LEGAL_PAIRS)
    def test_legal_pairs_gated_by_role(self, source, target):
        permitted = allowed_roles(source, target)
        for role in sorted(VALID_ROLES):
            if role in permitted:
                check_transition(source, target, role)
            else:
                with pytest.raises(ForbiddenError):
                    check_transition(source, target, role)

    def test_unknown_role_forbidden(self):
        with pytest.raises(ForbiddenError):
            check_transition("PENDING", "ACCEPTED", "CASHIER")

    def test_unknown_target_is_validation_error(self):
        with pytest.raises(ValidationError):
            check_transition("PENDING", "SHIPPED", ROLE_VENDOR_ADMIN)

    def test_illegal_checked_before_role(self):
        # USER is never allowed, but an illegal pair must still say "illegal"
        with pytest.raises(IllegalTransitionError):
            check_transition("DELIVERED", "PENDING", ROLE_USER)

    @pytest.mark.parametrize(
        "source,target,allowed,denied",
        [
            ("PENDING", "ACCEPTED", ROLE_VENDOR_ADMIN, ROLE_RIDER),
            ("READY_FOR_PICKUP", "PICKED_UP", ROLE_RIDER, ROLE_VENDOR_ADMIN),
            ("PICKED_UP", "DELIVERED", ROLE_RIDER, ROLE_VENDOR_ADMIN),
            ("RETURN", "RETURNED", ROLE_VENDOR_ADMIN, ROLE_RIDER),
        ],
    )
    def test_documented_examples(self, source, target, allowed, denied):
        check_transition(source, target, allowed)
        with pytest.raises(ForbiddenError):
            check_transition(source, target, denied)

"""
Pure domain rules: flow shape, business references, lifecycle edges.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from oa_kernel.domain.approval import (
    INSTANCE_TRANSITIONS,
    TERMINAL_INSTANCE_STATUSES,
    BusinessRef,
    InstanceStatus,
    NodeKind,
    NodeRecordStatus,
    NodeSpec,
    Outcome,
    is_valid_transition,
    validate_node_specs,
)
from oa_kernel.exceptions import InvalidInputError, InvalidShapeError


class TestValidateNodeSpecs:

    def test_sorted_by_order(self):
        specs = validate_node_specs([
            NodeSpec("hr", NodeKind.ROLE, 2, 9),
            NodeSpec("manager", NodeKind.FIXED_PERSON, 1, 7),
        ])
        assert [s.order for s in specs] == [1, 2]
        assert specs[0].name == "manager"

    def test_empty_rejected(self):
        with pytest.raises(InvalidShapeError):
            validate_node_specs([])

    def test_duplicate_order_rejected(self):
        with pytest.raises(InvalidShapeError, match="duplicate"):
            validate_node_specs([
                NodeSpec("a", NodeKind.DEPARTMENT_HEAD, 1),
                NodeSpec("b", NodeKind.DEPARTMENT_HEAD, 1),
            ])

    def test_order_must_start_at_one(self):
        with pytest.raises(InvalidShapeError):
            validate_node_specs([NodeSpec("a", NodeKind.DEPARTMENT_HEAD, 0)])

    @pytest.mark.parametrize("kind", [NodeKind.FIXED_PERSON, NodeKind.ROLE])
    def test_participant_required(self, kind):
        with pytest.raises(InvalidShapeError, match="participant"):
            validate_node_specs([NodeSpec("a", kind, 1)])

    def test_department_head_needs_no_participant(self):
        (spec,) = validate_node_specs([NodeSpec("head", NodeKind.DEPARTMENT_HEAD, 1)])
        assert spec.participant_id is None

    def test_gaps_in_order_allowed(self):
        specs = validate_node_specs([
            NodeSpec("a", NodeKind.DEPARTMENT_HEAD, 1),
            NodeSpec("b", NodeKind.DEPARTMENT_HEAD, 5),
        ])
        assert [s.order for s in specs] == [1, 5]

    @settings(max_examples=200)
    @given(st.lists(st.integers(min_value=-3, max_value=12), min_size=0, max_size=8))
    def test_accepts_exactly_distinct_positive_orders(self, orders):
        specs = [
            NodeSpec(f"n{i}", NodeKind.DEPARTMENT_HEAD, order)
            for i, order in enumerate(orders)
        ]
        valid = bool(orders) and min(orders) >= 1 and len(set(orders)) == len(orders)
        if valid:
            result = validate_node_specs(specs)
            assert [s.order for s in result] == sorted(orders)
        else:
            with pytest.raises(InvalidShapeError):
                validate_node_specs(specs)


class TestBusinessRef:

    def test_parse(self):
        ref = BusinessRef.parse("asset-disposal:77")
        assert ref == BusinessRef("asset-disposal", 77)
        assert str(ref) == "asset-disposal:77"

    @pytest.mark.parametrize("raw", ["leave", ":3", "leave:x", "leave:0", "leave:-1", ""])
    def test_malformed(self, raw):
        with pytest.raises(InvalidInputError):
            BusinessRef.parse(raw)

    @given(
        st.from_regex(r"[a-z][a-z\-]{0,20}", fullmatch=True),
        st.integers(min_value=1, max_value=10**9),
    )
    def test_str_parses_back(self, tag, row_id):
        ref = BusinessRef(tag, row_id)
        assert BusinessRef.parse(str(ref)) == ref


class TestLifecycle:

    def test_terminal_statuses_are_absorbing(self):
        for status in TERMINAL_INSTANCE_STATUSES:
            assert INSTANCE_TRANSITIONS[status] == frozenset()
            for target in InstanceStatus:
                assert not is_valid_transition(status, target)

    def test_running_can_advance_or_finish(self):
        for target in (
            InstanceStatus.RUNNING,
            InstanceStatus.APPROVED,
            InstanceStatus.REJECTED,
            InstanceStatus.CANCELLED,
        ):
            assert is_valid_transition(InstanceStatus.RUNNING, target)

    def test_pending_only_starts_running(self):
        assert is_valid_transition(InstanceStatus.PENDING, InstanceStatus.RUNNING)
        assert not is_valid_transition(InstanceStatus.PENDING, InstanceStatus.APPROVED)

    def test_outcome_record_status(self):
        assert Outcome.APPROVE.record_status is NodeRecordStatus.APPROVED
        assert Outcome.REJECT.record_status is NodeRecordStatus.REJECTED

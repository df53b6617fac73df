from datetime import date

import pytest

from kpi_review.core.exceptions import StateConflictError, ValidationError
from kpi_review.models.kpi_review import ReviewStatus, RejectionResolvedStatus
from kpi_review.schemas.calculation_config import CalculationConfig
from kpi_review.schemas.kpi import KPIItemSchema, KPISchema
from kpi_review.schemas.review import (
    EmployeeConfirmation,
    KPIReviewSchema,
    ManagerRatingSubmission,
    RejectionResolution,
    ReviewAction,
    SelfRatingSubmission,
)
from kpi_review.services import review_state_machine as machine


def _kpi(status="acknowledged"):
    return KPISchema(
        id=1, employee_id=1, manager_id=2, department_id=10, title="Q1", period="quarterly", year=2026,
        status=status,
        items=[
            KPIItemSchema(id=1, title="Revenue", target_value=100, goal_weight=0.5),
            KPIItemSchema(id=2, title="Accounts", target_value=50, goal_weight=0.5),
            KPIItemSchema(id=3, title="Teamwork", is_qualitative=True),
        ],
    )


def _config(self_rating=True, **flags):
    return CalculationConfig(period="quarterly", enable_employee_self_rating=self_rating, **flags)


def _review(status, **fields):
    return KPIReviewSchema(id=5, kpi_id=1, employee_id=1, manager_id=2, review_status=status, **fields)


def _self_rating(expected=ReviewStatus.PENDING, **overrides):
    payload = {
        "expected_status": expected,
        "ratings": [{"kpi_item_id": 1, "rating_value": 1.25}, {"kpi_item_id": 2, "rating_value": 1.5}],
        "accomplishments": [
            {"title": "Closed the ACME deal", "employee_rating": 1.5},
            {"title": "Onboarded two reps", "employee_rating": 1.25},
        ],
        "employee_signature": "data:image/png;base64,AAA",
        "review_date": date(2026, 4, 2),
    }
    payload.update(overrides)
    return SelfRatingSubmission(**payload)


def _manager_rating(expected=ReviewStatus.EMPLOYEE_SUBMITTED, ratings=None):
    return ManagerRatingSubmission(
        expected_status=expected,
        ratings=ratings if ratings is not None else [
            {"kpi_item_id": 1, "rating_value": 1.0},
            {"kpi_item_id": 2, "rating_value": 1.5},
            {"kpi_item_id": 3, "qualitative_rating": "meets"},
        ],
        manager_comment="Solid quarter",
        manager_signature="sig-manager",
    )


# --- guards ---

@pytest.mark.parametrize("action", list(ReviewAction))
@pytest.mark.parametrize("status", list(ReviewStatus))
def test_actions_outside_their_source_states_conflict(action, status):
    review = None if status == ReviewStatus.NONE else _review(status)
    if status in machine.SOURCE_STATES[action]:
        assert machine.require_state(action, review, status) == status
    else:
        with pytest.raises(StateConflictError):
            machine.require_state(action, review, status)


def test_stale_expected_status_conflicts():
    with pytest.raises(StateConflictError) as exc:
        machine.submit_self_rating(_kpi(), _review("pending"), _config(), _self_rating(expected="employee_submitted"))
    assert exc.value.actual == "pending"
    assert exc.value.status_code == 409


# --- NONE -> PENDING ---

def test_open_review():
    review = machine.open_review(_kpi(), None, _config())
    assert review.review_status == ReviewStatus.PENDING
    assert review.kpi_id == 1


def test_open_review_requires_acknowledged_kpi():
    with pytest.raises(ValidationError) as exc:
        machine.open_review(_kpi(status="pending"), None, _config())
    assert exc.value.field == "kpi.status"


def test_open_review_when_self_rating_disabled():
    with pytest.raises(ValidationError) as exc:
        machine.open_review(_kpi(), None, _config(self_rating=False))
    assert exc.value.field == "enable_employee_self_rating"


def test_open_review_twice_conflicts():
    with pytest.raises(StateConflictError):
        machine.open_review(_kpi(), _review("pending"), _config())


# --- PENDING -> EMPLOYEE_SUBMITTED ---

def test_self_rating_is_normalized():
    result = machine.submit_self_rating(_kpi(), _review("pending"), _config(), _self_rating())
    assert result.raw_rating == pytest.approx(1.375)
    assert result.normalized_rating == 1.25
    assert result.rating_label == "Meets Expectation"
    assert result.review.review_status == ReviewStatus.EMPLOYEE_SUBMITTED
    assert result.review.employee_rating == 1.25
    assert result.review.employee_final_rating == pytest.approx(1.375)
    assert [a.item_order for a in result.review.accomplishments] == [1, 2]
    assert result.review.employee_submitted_at is not None


def test_self_rating_under_goal_weight():
    config = _config(use_normal_calculation=False, use_goal_weight=True)
    result = machine.submit_self_rating(_kpi(), _review("pending"), config, _self_rating())
    assert result.raw_rating == pytest.approx(1.375)


def test_self_rating_falls_back_to_mean_under_actual_vs_target():
    config = _config(use_normal_calculation=False, use_actual_values=True)
    result = machine.submit_self_rating(_kpi(), _review("pending"), config, _self_rating())
    assert result.raw_rating == pytest.approx(1.375)


@pytest.mark.parametrize("overrides,field", [
    ({"accomplishments": [{"title": "Only one", "employee_rating": 1.5}]}, "accomplishments"),
    ({"accomplishments": [{"title": " ", "employee_rating": 1.5}, {"title": "B", "employee_rating": 1.0}]},
     "accomplishments[0].title"),
    ({"accomplishments": [{"title": "A", "employee_rating": 1.5}, {"title": "B"}]},
     "accomplishments[1].employee_rating"),
    ({"ratings": [{"kpi_item_id": 1, "rating_value": 1.25}]}, "ratings"),
    ({"ratings": [{"kpi_item_id": 1, "rating_value": 1.25}, {"kpi_item_id": 2, "rating_value": 0}]}, "ratings"),
    ({"ratings": [{"kpi_item_id": 1, "rating_value": 1.0}, {"kpi_item_id": 2, "rating_value": 1.0},
                  {"kpi_item_id": 42, "rating_value": 1.0}]}, "ratings"),
    ({"employee_signature": ""}, "employee_signature"),
    ({"review_date": None}, "review_date"),
])
def test_self_rating_guards(overrides, field):
    review = _review("pending")
    with pytest.raises(ValidationError) as exc:
        machine.submit_self_rating(_kpi(), review, _config(), _self_rating(**overrides))
    assert exc.value.field == field
    # Nothing was mutated
    assert review.review_status == ReviewStatus.PENDING


# --- -> MANAGER_SUBMITTED ---

def test_manager_rating():
    result = machine.submit_manager_rating(_kpi(), _review("employee_submitted"), _config(), _manager_rating())
    assert result.review.review_status == ReviewStatus.MANAGER_SUBMITTED
    assert result.review.manager_rating == pytest.approx(1.25)
    assert result.review.manager_final_rating == pytest.approx(1.25)
    qualitative = [r for r in result.ratings if r.kpi_item_id == 3][0]
    assert qualitative.rating_value is None
    assert qualitative.qualitative_rating.value == "meets"


def test_manager_rating_requires_every_item():
    with pytest.raises(ValidationError) as exc:
        machine.submit_manager_rating(
            _kpi(), _review("employee_submitted"), _config(),
            _manager_rating(ratings=[{"kpi_item_id": 1, "rating_value": 1.0}]),
        )
    assert exc.value.field == "ratings"


def test_manager_rating_actual_vs_target():
    config = _config(use_normal_calculation=False, use_actual_values=True)
    submission = _manager_rating(ratings=[
        {"kpi_item_id": 1, "actual_value": 80},
        {"kpi_item_id": 2, "actual_value": "50"},
    ])
    result = machine.submit_manager_rating(_kpi(), _review("employee_submitted"), config, submission)
    assert result.final_rating_percentage == pytest.approx(90.0)
    first = [r for r in result.ratings if r.kpi_item_id == 1][0]
    assert first.percentage_value_obtained == pytest.approx(80.0)
    assert first.manager_rating_percentage == pytest.approx(40.0)


def test_manager_rating_actual_vs_target_requires_actual_values():
    config = _config(use_normal_calculation=False, use_actual_values=True)
    with pytest.raises(ValidationError) as exc:
        machine.submit_manager_rating(
            _kpi(), _review("employee_submitted"), config,
            _manager_rating(ratings=[{"kpi_item_id": 1, "actual_value": 80}]),
        )
    assert exc.value.field == "ratings.actual_value"


def test_manager_cannot_start_when_self_rating_enabled():
    with pytest.raises(StateConflictError):
        machine.submit_manager_rating(_kpi(), None, _config(), _manager_rating(expected="none"))


def test_manager_initiated_review_when_self_rating_disabled():
    result = machine.submit_manager_rating(_kpi(), None, _config(self_rating=False), _manager_rating(expected="none"))
    assert result.review.id is None
    assert result.review.kpi_id == 1
    assert result.review.review_status == ReviewStatus.MANAGER_SUBMITTED


def test_manager_initiated_review_requires_acknowledged_kpi():
    with pytest.raises(ValidationError):
        machine.submit_manager_rating(
            _kpi(status="pending"), None, _config(self_rating=False), _manager_rating(expected="none")
        )


# --- MANAGER_SUBMITTED -> COMPLETED | REJECTED ---

def test_approve_requires_signature():
    with pytest.raises(ValidationError) as exc:
        machine.confirm_review(_review("manager_submitted"), EmployeeConfirmation(action="approve"))
    assert exc.value.field == "signature"


def test_approve():
    review = machine.confirm_review(
        _review("manager_submitted"), EmployeeConfirmation(action="approve", signature="sig-employee")
    )
    assert review.review_status == ReviewStatus.COMPLETED
    assert review.employee_confirmation_signature == "sig-employee"


def test_reject_requires_note():
    with pytest.raises(ValidationError) as exc:
        machine.confirm_review(_review("manager_submitted"), EmployeeConfirmation(action="reject", rejection_note=""))
    assert exc.value.field == "rejection_note"


def test_reject():
    review = machine.confirm_review(
        _review("manager_submitted"),
        EmployeeConfirmation(action="rejected", rejection_note="Item 2 target was changed mid-quarter"),
    )
    assert review.review_status == ReviewStatus.REJECTED
    assert review.rejection_resolved_status == RejectionResolvedStatus.NONE
    assert review.employee_confirmation_signature is None


def test_legacy_status_label_is_accepted():
    review = KPIReviewSchema(id=5, kpi_id=1, employee_id=1, manager_id=2, status="awaiting_employee_confirmation")
    assert review.review_status == ReviewStatus.MANAGER_SUBMITTED
    approved = machine.confirm_review(review, EmployeeConfirmation(action="approve", signature="sig"))
    assert approved.review_status == ReviewStatus.COMPLETED


def test_completed_review_cannot_be_confirmed_again():
    with pytest.raises(StateConflictError):
        machine.confirm_review(_review("completed"), EmployeeConfirmation(action="approve", signature="sig"))


# --- rejection resolution ---

def test_resolve_rejection():
    review = machine.resolve_rejection(_review("rejected"), RejectionResolution(note="Target corrected"))
    assert review.review_status == ReviewStatus.REJECTED
    assert review.rejection_resolved_status == RejectionResolvedStatus.RESOLVED
    assert review.rejection_resolved_at is not None


def test_resolve_rejection_requires_note():
    with pytest.raises(ValidationError):
        machine.resolve_rejection(_review("rejected"), RejectionResolution(note="  "))


def test_resolve_rejection_twice_conflicts():
    resolved = _review("rejected", rejection_resolved_status="resolved")
    with pytest.raises(StateConflictError):
        machine.resolve_rejection(resolved, RejectionResolution(note="again"))
    with pytest.raises(StateConflictError):
        machine.resolve_rejection(resolved, RejectionResolution(expected_resolution="resolved", note="again"))


# --- allowed actions ---

def test_allowed_actions():
    def actions(kpi, review, config):
        return [a.action for a in machine.allowed_actions(kpi, review, config)]

    assert actions(_kpi(), None, _config()) == [ReviewAction.OPEN_REVIEW]
    assert actions(_kpi(status="pending"), None, _config()) == []
    assert actions(_kpi(), None, _config(self_rating=False)) == [ReviewAction.SUBMIT_MANAGER_RATING]
    assert actions(_kpi(), _review("pending"), _config()) == [ReviewAction.SUBMIT_SELF_RATING]
    assert actions(_kpi(), _review("manager_submitted"), _config()) == [ReviewAction.APPROVE, ReviewAction.REJECT]
    assert actions(_kpi(), _review("rejected", rejection_resolved_status="resolved"), _config()) == []


# --- rating scale ---

def test_self_rating_outside_the_scale_is_rejected():
    submission = _self_rating(ratings=[
        {"kpi_item_id": 1, "rating_value": 99},
        {"kpi_item_id": 2, "rating_value": 1.0},
    ])
    with pytest.raises(ValidationError) as exc:
        machine.submit_self_rating(_kpi(), _review("pending"), _config(), submission)
    assert exc.value.field == "ratings"
    assert exc.value.details["off_scale"] == [1]


def test_accomplishment_rating_outside_the_scale_is_rejected():
    submission = _self_rating(accomplishments=[
        {"title": "Closed the ACME deal", "employee_rating": 42},
        {"title": "Onboarded two reps", "employee_rating": 1.25},
    ])
    with pytest.raises(ValidationError) as exc:
        machine.submit_self_rating(_kpi(), _review("pending"), _config(), submission)
    assert exc.value.field == "accomplishments"
    assert exc.value.details["off_scale"] == [0]


def test_manager_rating_outside_the_scale_is_rejected():
    submission = _manager_rating(ratings=[
        {"kpi_item_id": 1, "rating_value": 500},
        {"kpi_item_id": 2, "rating_value": 1.5},
    ])
    config = _config(use_normal_calculation=False, use_goal_weight=True)
    with pytest.raises(ValidationError) as exc:
        machine.submit_manager_rating(_kpi(), _review("employee_submitted"), config, submission)
    assert exc.value.field == "ratings"


def test_manager_goal_weight_above_one_is_rejected():
    config = _config(use_normal_calculation=False, use_actual_values=True)
    submission = _manager_rating(ratings=[
        {"kpi_item_id": 1, "actual_value": 80, "goal_weight": 1.5},
        {"kpi_item_id": 2, "actual_value": 50},
    ])
    with pytest.raises(ValidationError) as exc:
        machine.submit_manager_rating(_kpi(), _review("employee_submitted"), config, submission)
    assert exc.value.field == "ratings.goal_weight"

"""
Workflow engine for the per-post editing steps.

raw -> details -> images -> pricing -> complete

Gates are derived from the post every time they are asked, never stored.
Moving forward is gated and idempotent; moving back is free and keeps the
data entered in later steps.
"""

from typing import Optional
import structlog

from models.post import Post, PostStatus, WorkflowStep, WorkflowStateResponse
from exceptions import InvalidStepTransitionError, StepNotReadyError

logger = structlog.get_logger(__name__)


STEP_ORDER = [
    WorkflowStep.RAW,
    WorkflowStep.DETAILS,
    WorkflowStep.IMAGES,
    WorkflowStep.PRICING,
    WorkflowStep.COMPLETE,
]


def step_index(step: WorkflowStep) -> int:
    return STEP_ORDER.index(step)


# ===================
# GATES
# ===================

def can_proceed_to_details(post: Post) -> bool:
    return (
        post.step_completed.raw
        and post.has_raw_content
        and post.has_parsed_json
        and post.status == PostStatus.PARSED
    )


def can_proceed_to_images(post: Post) -> bool:
    return post.step_completed.details


def can_proceed_to_pricing(post: Post) -> bool:
    return len(post.images) > 0


def can_complete(post: Post) -> bool:
    return post.step_completed.pricing


# Gate guarding entry into each step
GATES = {
    WorkflowStep.DETAILS: can_proceed_to_details,
    WorkflowStep.IMAGES: can_proceed_to_images,
    WorkflowStep.PRICING: can_proceed_to_pricing,
    WorkflowStep.COMPLETE: can_complete,
}


def missing_requirements(post: Post, target: WorkflowStep) -> list[str]:
    """Human-readable list of what blocks entry into target."""
    missing = []
    if target == WorkflowStep.DETAILS:
        if not post.has_raw_content:
            missing.append("raw_content")
        if not post.has_parsed_json:
            missing.append("parsed_json")
        if post.status != PostStatus.PARSED:
            missing.append("status_parsed")
        if not post.step_completed.raw:
            missing.append("raw_step_completed")
    elif target == WorkflowStep.IMAGES and not post.step_completed.details:
        missing.append("details_step_completed")
    elif target == WorkflowStep.PRICING and not post.images:
        missing.append("images")
    elif target == WorkflowStep.COMPLETE and not post.step_completed.pricing:
        missing.append("pricing_step_completed")
    return missing


# ===================
# TRANSITIONS
# ===================

def next_transition(
    post: Post,
    from_step: Optional[WorkflowStep] = None
) -> Optional[WorkflowStep]:
    """
    Decide the step after the post's current one.

    Args:
        post: Post to advance
        from_step: Step the caller believes the post is at. If the post has
            already moved on, the advance is skipped.

    Returns:
        The next step, or None when there is nothing to do (already
        complete, or no longer at from_step)

    Raises:
        StepNotReadyError: Gate for the next step does not hold
    """
    current = post.workflow_step
    if from_step is not None and current != from_step:
        logger.debug(
            "step_advance_skipped",
            post_id=post.id,
            current_step=current.value,
            from_step=from_step.value
        )
        return None
    if current == WorkflowStep.COMPLETE:
        return None

    target = STEP_ORDER[step_index(current) + 1]
    if not GATES[target](post):
        raise StepNotReadyError(post.id, target.value, missing_requirements(post, target))
    return target


def back_transition(post: Post, target: Optional[WorkflowStep] = None) -> WorkflowStep:
    """
    Decide the step to go back to.

    Args:
        post: Post to move back
        target: Any earlier step (default: the previous one)

    Raises:
        InvalidStepTransitionError: Already at the first step, or target is
            not earlier than the current step
    """
    current = post.workflow_step
    current_index = step_index(current)

    if target is None:
        if current_index == 0:
            raise InvalidStepTransitionError(current.value, current.value, "already at first step")
        return STEP_ORDER[current_index - 1]

    if step_index(target) >= current_index:
        raise InvalidStepTransitionError(current.value, target.value, "target is not an earlier step")
    return target


def should_auto_advance(post: Post) -> bool:
    """True when a finished analysis should carry the post from raw to details."""
    return post.workflow_step == WorkflowStep.RAW and can_proceed_to_details(post)


def workflow_state(post: Post) -> WorkflowStateResponse:
    return WorkflowStateResponse(
        post_id=post.id,
        current_step=post.workflow_step,
        step_completed=post.step_completed,
        can_proceed_to_details=can_proceed_to_details(post),
        can_proceed_to_images=can_proceed_to_images(post),
        can_proceed_to_pricing=can_proceed_to_pricing(post),
        can_complete=can_complete(post),
    )

"""Plain-language guidance for reason codes and recovery recommendations."""

from typing import Optional

from blueprint_flow.errors import Reason
from blueprint_flow.stuck_recovery import RecoveryRecommendation


REASON_GUIDANCE = {
    Reason.ALREADY_TERMINAL: "Your blueprint is complete. Export it, or restart to build another.",
    Reason.AT_START: "There is nothing to go back to. This is the first step.",
    Reason.REQUIRED_STEP_INCOMPLETE: "Finish this step before continuing.",
    Reason.SKIP_NOT_PERMITTED: "This step is required and can't be skipped.",
    Reason.UNKNOWN_ACTION: "That option isn't available here.",
    Reason.EMPTY_INPUT: "Type an answer before sending.",
    Reason.INVALID_INPUT: "That answer needs a little more work.",
    Reason.NO_INPUT_EXPECTED: "No answer is needed here. Continue when you're ready.",
}

RECOVERY_GUIDANCE = {
    RecoveryRecommendation.OFFER_EXAMPLES: "Would you like to see a few example answers for this step?",
    RecoveryRecommendation.OFFER_HELP: "Need a hand? I can explain what this step is asking for.",
    RecoveryRecommendation.OFFER_SKIP: "This step is optional. You can skip it and come back later.",
    RecoveryRecommendation.OFFER_RESTART: "It might help to start this blueprint over from the beginning.",
}

DEFAULT_GUIDANCE = "Something went wrong with that request. Please try again."


def guidance_for(reason: Optional[str]) -> Optional[str]:
    """User-facing text for a reason code; None when there is nothing to explain."""
    if reason is None:
        return None
    return REASON_GUIDANCE.get(reason, DEFAULT_GUIDANCE)


def recovery_message(recommendation: RecoveryRecommendation) -> Optional[str]:
    return RECOVERY_GUIDANCE.get(recommendation)

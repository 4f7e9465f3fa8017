"""
User-facing copy for every ledger and gate outcome.

Routes never echo internal error text; they look the outcome up here.
"""

from enum import Enum

from ..outcomes import GateDecision, GateReason


OUTCOME_MESSAGES = {
    # Likes
    "like.created": "Like sent.",
    "like.already_exists": "You already liked this profile.",
    "like.blocked": "This profile is not available.",
    # Sparks
    "spark.sent": "Spark sent! If they spark you back, you can start chatting.",
    "spark.already_sent": "You already sent a spark to this person.",
    "spark.insufficient_stock": "You are out of sparks for now. More arrive with your next renewal.",
    "spark.blocked": "This profile is not available.",
    "spark.withdrawn": "Spark withdrawn.",
    "spark.not_found": "There is no active spark to withdraw.",
    # Echoes
    "echo.offered": "Echo sent. They can echo you back to open the conversation.",
    "echo.already_offered": "Your echo is already waiting for a reply.",
    "echo.heart_required": "Send a spark first, then you can add an echo.",
    "echo.insufficient_stock": "You are out of echoes for now.",
    "echo.blocked": "This profile is not available.",
    "echo.returned": "You echoed back. The conversation is open!",
    "echo.declined": "Echo declined.",
    "echo.expired": "This echo has expired.",
    "echo.not_found": "There is no pending echo from this person.",
}

GATE_MESSAGES = {
    GateReason.BLOCKED: "This conversation is not available.",
    GateReason.MUTUAL_SPARK: "You sparked each other. Say hello!",
    GateReason.ECHO_RETURNED: "Your echo was returned. Say hello!",
    GateReason.ENTITLEMENT: "Your membership lets you message freely.",
    GateReason.FREE_QUOTA: "Conversation opened with one of your free messages.",
}

QUOTA_EXHAUSTED_MESSAGES = {
    "weekly": "You have used your free conversations for this week. Upgrade to keep chatting.",
    "monthly": "You have used your free conversations for this month. Upgrade to keep chatting.",
}

STORAGE_UNAVAILABLE_MESSAGE = "Something took longer than expected. Nothing was charged, please try again."


def outcome_message(kind: str, outcome: Enum | str) -> str:
    value = outcome.value if isinstance(outcome, Enum) else str(outcome)
    return OUTCOME_MESSAGES.get(f"{kind}.{value}", "Done.")


def gate_message(decision: GateDecision) -> str:
    if decision.reason == GateReason.QUOTA_EXHAUSTED:
        window = decision.quota.exhausted_window if decision.quota else None
        return QUOTA_EXHAUSTED_MESSAGES.get(window or "weekly")
    return GATE_MESSAGES.get(decision.reason, "")

from datetime import datetime

TERMINAL_ECHO_STATES = {"returned", "declined", "expired"}
TERMINAL_SPARK_STATES = {"withdrawn", "expired"}


def transition_echo(current: str, action: str, now: datetime, expires_at: datetime) -> str:
    if current in TERMINAL_ECHO_STATES:
        return current

    if current == "offered" and now >= expires_at:
        return "expired"

    if action == "return":
        if current == "offered":
            return "returned"
        return current

    if action == "decline":
        if current == "offered":
            return "declined"
        return current

    return current


def transition_spark(current: str, action: str, now: datetime, expires_at: datetime) -> str:
    """Any action on an overdue active spark expires it first."""
    if current in TERMINAL_SPARK_STATES:
        return current

    if current == "active" and now >= expires_at:
        return "expired"

    if action == "withdraw" and current == "active":
        return "withdrawn"

    return current

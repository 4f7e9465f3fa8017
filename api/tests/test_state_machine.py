from datetime import datetime, timedelta, timezone

from sparkmatch.services.state_machine import transition_echo, transition_spark


def test_echo_return_and_decline_from_offered():
    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=2)

    assert transition_echo("offered", "return", now, expires) == "returned"
    assert transition_echo("offered", "decline", now, expires) == "declined"
    assert transition_echo("offered", "view", now, expires) == "offered"


def test_echo_terminal_states_are_sticky():
    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=2)
    for state in ("returned", "declined", "expired"):
        assert transition_echo(state, "return", now, expires) == state
        assert transition_echo(state, "decline", now, expires) == state


def test_echo_past_deadline_expires_whatever_the_action():
    now = datetime.now(timezone.utc)
    past = now - timedelta(seconds=1)
    assert transition_echo("offered", "return", now, past) == "expired"
    assert transition_echo("offered", "decline", now, past) == "expired"


def test_spark_transitions():
    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=30)
    assert transition_spark("active", "withdraw", now, expires) == "withdrawn"
    assert transition_spark("active", "withdraw", now, now) == "expired"
    assert transition_spark("active", "check", now, now - timedelta(days=1)) == "expired"
    assert transition_spark("active", "check", now, expires) == "active"
    assert transition_spark("withdrawn", "withdraw", now, expires) == "withdrawn"
    assert transition_spark("expired", "withdraw", now, expires) == "expired"

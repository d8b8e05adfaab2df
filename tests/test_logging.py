import logging

from matrix_game.utils.logging_config import (
    ACTION_LOGGER, EVENT_LOGGER, format_context, log_game_event, log_user_action,
)


def test_format_context_is_sorted():
    assert format_context({"b": 2, "a": 1}) == "a=1 b=2"
    assert format_context(None) == ""


def test_game_event_payload_is_logged_verbatim(caplog):
    caplog.set_level(logging.DEBUG, logger=EVENT_LOGGER)

    log_game_event("g1", "PLAYER_ROLE_CHANGED", player_id="host", data={"player_id": "p2", "role": "arbiter"})
    log_game_event("g1", "ROUND_STARTED")

    assert [r.getMessage() for r in caplog.records] == [
        "game_id=g1 event=PLAYER_ROLE_CHANGED by=host player_id=p2 role=arbiter",
        "game_id=g1 event=ROUND_STARTED by=system",
    ]


def test_user_action_logged(caplog):
    caplog.set_level(logging.DEBUG, logger=ACTION_LOGGER)
    log_user_action(1001, "submit_vote", vote_type="uncertain")
    assert caplog.records[0].getMessage() == "user_id=1001 action=submit_vote vote_type=uncertain"

"""Tests for the Pushover notifier."""

import requests

from market_feed_collect.notifications import PUSHOVER_URL, PushoverNotifier


def test_unconfigured_notifier_sends_nothing(fake_session, fake_response):
    session = fake_session(lambda payload: fake_response({}))
    notifier = PushoverNotifier(None, "user", session=session)

    assert notifier.send_notification("hello") is False
    assert session.calls == []


def test_send_notification_posts_form(fake_session, fake_response):
    session = fake_session(lambda payload: fake_response({"status": 1}))
    notifier = PushoverNotifier("token", "user", session=session)

    assert notifier.send_notification("SPY missing", title="5min ingestion incomplete") is True

    call = session.calls[0]
    assert call["url"] == PUSHOVER_URL
    assert call["data"] == {
        "token": "token",
        "user": "user",
        "message": "SPY missing",
        "title": "5min ingestion incomplete",
    }


def test_http_error_returns_false(fake_session, fake_response):
    session = fake_session(lambda payload: fake_response({}, status_code=500))
    notifier = PushoverNotifier("token", "user", session=session)

    assert notifier.send_notification("hello") is False


def test_connection_error_returns_false(fake_session):
    def refuse(payload):
        raise requests.exceptions.ConnectionError("refused")

    notifier = PushoverNotifier("token", "user", session=fake_session(refuse))

    assert notifier.send_notification("hello") is False

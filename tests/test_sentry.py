from utils import sentry
from utils.personal_data import mask_identifier


def test_before_send_scrubs_identifiers_and_positions() -> None:
    event = {
        "user": {"user_id": 7, "username": "alice"},
        "extra": {"location": {"latitude": 41.38791}, "credential": "tg:7"},
        "breadcrumbs": {"values": [{"data": {"chat_id": 7}}]},
    }

    scrubbed = sentry._before_send(event, None)

    assert scrubbed["user"]["user_id"] == mask_identifier(7, prefix="user")
    assert scrubbed["user"]["username"].startswith("user-")
    assert scrubbed["extra"] == {"location": {"latitude": 41.39}, "credential": "***"}
    assert scrubbed["breadcrumbs"]["values"][0]["data"]["chat_id"] == mask_identifier(
        7, prefix="chat"
    )


def test_capture_is_noop_without_initialisation(monkeypatch) -> None:
    monkeypatch.setattr(sentry, "_SENTRY_INITIALIZED", False)
    monkeypatch.delenv("SENTRY_DSN", raising=False)

    assert sentry.init_sentry(None) is False
    sentry.capture_exception(RuntimeError("ignored"), user_id=1, activity_id="a1")

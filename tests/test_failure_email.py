"""Tests for failed-job notifications."""

from server.helpers import notifications


def test_notify_job_failed_includes_context(monkeypatch) -> None:
    emails: list[tuple[str, str]] = []
    monkeypatch.setattr(notifications, "send_failure_email", lambda s, b: emails.append((s, b)))

    notifications.notify_job_failed("sess-1", "facebook", "boom")

    assert len(emails) == 1
    subject, body = emails[0]
    assert "sess-1" in subject
    assert "facebook" in body
    assert "boom" in body


def test_send_failure_email_is_noop_without_smtp(monkeypatch) -> None:
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("ALERT_EMAIL_TO", raising=False)

    def explode(*args, **kwargs):
        raise AssertionError("SMTP should not be used")

    monkeypatch.setattr(notifications.smtplib, "SMTP", explode)
    notifications.send_failure_email("subject", "body")

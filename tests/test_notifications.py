"""Tests for event rendering and delivery."""

import notifications
from notifications import ContactReceived, Dispatcher, EmailSender, OrderStatusChanged, UserRegistered


class Recorder:
    def __init__(self):
        self.sent = []

    def send(self, email):
        self.sent.append(email)


class TestRendering:
    def test_status_change_email(self):
        (email,) = notifications.render_status_changed(OrderStatusChanged(
            order_id="abc", customer_name="<b>John</b>", email="john@example.com",
            old_status="pending", new_status="completed",
        ))
        assert email.to == "john@example.com"
        assert "completed" in email.html
        assert "&lt;b&gt;John&lt;/b&gt;" in email.html

    def test_contact_alerts_admin(self, monkeypatch):
        monkeypatch.setattr(notifications, "ADMIN_EMAIL", "ops@freshwash.com")
        emails = notifications.render_contact_received(ContactReceived(
            contact_id="c1", name="Priya", email="priya@example.com", subject="Hi",
            message="x" * 150, category="general", priority="low",
        ))
        assert [e.to for e in emails] == ["priya@example.com", "ops@freshwash.com"]
        assert "x" * 100 + "..." in emails[0].html

    def test_no_admin_alert_without_address(self, monkeypatch):
        monkeypatch.setattr(notifications, "ADMIN_EMAIL", None)
        emails = notifications.render_contact_received(ContactReceived(
            contact_id="c1", name="Priya", email="priya@example.com", subject="Hi",
            message="Hello", category="general", priority="low",
        ))
        assert len(emails) == 1


class TestDelivery:
    def test_deliver_sends_rendered_emails(self):
        recorder = Recorder()
        Dispatcher(sender=recorder).deliver(UserRegistered(name="Asha", email="asha@example.com"))
        assert [e.to for e in recorder.sent] == ["asha@example.com"]

    def test_deliver_swallows_failures(self, caplog):
        class Broken:
            def send(self, email):
                raise OSError("boom")

        Dispatcher(sender=Broken()).deliver(UserRegistered(name="Asha", email="asha@example.com"))
        assert "Failed to deliver UserRegistered notification" in caplog.text

    def test_sender_without_host_only_logs(self, caplog):
        with caplog.at_level("INFO", logger="notifications"):
            EmailSender(host=None).send(notifications.Email("a@example.com", "Subject", "<p>hi</p>"))
        assert "Email would be sent to a@example.com" in caplog.text

"""
Outbound notifications.

Lifecycle and support operations emit domain events; the dispatcher renders each
event into one or more emails and hands them to the sender. Delivery runs as a
FastAPI background task after the response has been produced, and any failure
is logged and dropped.
"""

import html
import logging
import os
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Callable, List, Optional

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL") or SMTP_USER
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

BRAND = "FreshWash Laundry"


# Events
@dataclass(frozen=True)
class OrderCreated:
    order_id: str
    customer_name: str
    email: str
    items: List[dict]
    total_price: float
    shipping_address: dict


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: str
    customer_name: str
    email: str
    old_status: str
    new_status: str


@dataclass(frozen=True)
class ContactReceived:
    contact_id: str
    name: str
    email: str
    subject: str
    message: str
    category: str
    priority: str


@dataclass(frozen=True)
class ContactResponded:
    name: str
    email: str
    subject: str
    original_message: str
    response: str


@dataclass(frozen=True)
class UserRegistered:
    name: str
    email: str


@dataclass
class Email:
    to: str
    subject: str
    html: str


# Templates
STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed and is being prepared.",
    "in-progress": "Your items are currently being cleaned.",
    "completed": "Your order is ready! We'll deliver it shortly.",
    "cancelled": "Your order has been cancelled.",
    "refunded": "Your payment has been refunded.",
    "pending": "Your order is awaiting confirmation.",
}

STATUS_COLORS = {
    "confirmed": "#3b82f6",
    "in-progress": "#f59e0b",
    "completed": "#10b981",
    "cancelled": "#ef4444",
    "refunded": "#6b7280",
}


def _layout(title: str, body: str) -> str:
    return f"""
    <html>
      <head><meta charset='utf-8' /><title>{title}</title></head>
      <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
          <div style="background: #3b82f6; color: white; padding: 20px; text-align: center;">
            <h1 style="margin: 0;">{BRAND}</h1>
            <p style="margin: 5px 0;">Clean Clothes, Happy You</p>
          </div>
          <div style="padding: 20px; background: #f9f9f9;">
            {body}
          </div>
        </div>
      </body>
    </html>
    """


def render_order_created(event: OrderCreated) -> List[Email]:
    e = html.escape
    rows = "".join(
        f"<tr><td>{e(str(i.get('name')))} ({e(str(i.get('service_type')))})</td>"
        f"<td style='text-align:center'>{i.get('quantity')}</td>"
        f"<td style='text-align:right'>₹{float(i.get('subtotal', 0)):.2f}</td></tr>"
        for i in event.items
    )
    addr = event.shipping_address
    body = f"""
      <h2>Order Confirmation</h2>
      <p>Dear {e(event.customer_name)},</p>
      <p>Thank you for your order! We've received your laundry request and will process it shortly.</p>
      <p><strong>Order Number:</strong> {event.order_id}</p>
      <table style="width: 100%; border-collapse: collapse;">
        <thead><tr><th>Service</th><th>Quantity</th><th>Price</th></tr></thead>
        <tbody>
          {rows}
          <tr><td colspan="2"><strong>Total Amount</strong></td><td style='text-align:right'><strong>₹{event.total_price:.2f}</strong></td></tr>
        </tbody>
      </table>
      <h3>Delivery Address</h3>
      <p>{e(addr.get('name', ''))}<br>{e(addr.get('street', ''))}<br>{e(addr.get('city', ''))}, {e(addr.get('state', ''))} - {e(addr.get('zip_code', ''))}</p>
    """
    return [Email(event.email, f"Order Confirmation - {BRAND}", _layout("Order Confirmation", body))]


def render_status_changed(event: OrderStatusChanged) -> List[Email]:
    color = STATUS_COLORS.get(event.new_status, "#3b82f6")
    message = STATUS_MESSAGES.get(event.new_status, "")
    body = f"""
      <h2>Order Status Update</h2>
      <p>Dear {html.escape(event.customer_name)},</p>
      <h3>Order #{event.order_id}</h3>
      <div style="background: {color}; color: white; padding: 15px; border-radius: 5px;">
        <h2 style="margin: 0; text-transform: uppercase;">{event.new_status}</h2>
      </div>
      <p>{message}</p>
      <p><a href="{FRONTEND_URL}/dashboard#orders">View Order Details</a></p>
    """
    return [Email(event.email, f"Order Status Update - {BRAND}", _layout("Order Status Update", body))]


def render_contact_received(event: ContactReceived) -> List[Email]:
    e = html.escape
    preview = event.message[:100] + ("..." if len(event.message) > 100 else "")
    ack = f"""
      <h2>We received your message</h2>
      <p>Dear {e(event.name)},</p>
      <p>Thanks for reaching out about <strong>{e(event.subject)}</strong>. Our team will get back to you soon.</p>
      <blockquote>{e(preview)}</blockquote>
      <p>Reference: {event.contact_id}</p>
    """
    emails = [Email(event.email, f"We received your message - {BRAND}", _layout("Message received", ack))]
    if ADMIN_EMAIL:
        alert = f"""
          <h3>New Contact Message Received</h3>
          <p><strong>From:</strong> {e(event.name)} ({e(event.email)})</p>
          <p><strong>Subject:</strong> {e(event.subject)}</p>
          <p><strong>Category:</strong> {event.category}</p>
          <p><strong>Priority:</strong> {event.priority}</p>
          <p>{e(event.message)}</p>
          <p>Contact ID: {event.contact_id}</p>
        """
        emails.append(Email(ADMIN_EMAIL, f"New Contact Message: {event.subject}", _layout("New contact", alert)))
    return emails


def render_contact_responded(event: ContactResponded) -> List[Email]:
    e = html.escape
    body = f"""
      <p>Dear {e(event.name)},</p>
      <p>Thank you for contacting us. Here's our response to your message:</p>
      <div style="background: #f0f9ff; padding: 15px; border-left: 4px solid #3b82f6;">
        <p><strong>Subject:</strong> {e(event.subject)}</p>
        <p>{e(event.original_message)}</p>
      </div>
      <div style="background: #f0f9ff; padding: 15px; border-left: 4px solid #10b981;">
        <p>{e(event.response)}</p>
      </div>
      <p>Best regards,<br>{BRAND} Team</p>
    """
    return [Email(event.email, f"Response to: {event.subject} - {BRAND}", _layout("Response", body))]


def render_user_registered(event: UserRegistered) -> List[Email]:
    body = f"""
      <h2>Hello {html.escape(event.name)}!</h2>
      <p>Welcome to {BRAND}! Free pickup and delivery, 24-48 hour turnaround.</p>
      <p><a href="{FRONTEND_URL}/services">Browse Our Services</a></p>
    """
    return [Email(event.email, f"Welcome to {BRAND}", _layout("Welcome", body))]


RENDERERS = {
    OrderCreated: render_order_created,
    OrderStatusChanged: render_status_changed,
    ContactReceived: render_contact_received,
    ContactResponded: render_contact_responded,
    UserRegistered: render_user_registered,
}


# Delivery
class EmailSender:
    """Sends through SMTP, or only logs the message when no SMTP host is configured."""

    def __init__(self, host: Optional[str] = SMTP_HOST, port: int = SMTP_PORT,
                 user: Optional[str] = SMTP_USER, password: Optional[str] = SMTP_PASS):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, email: Email) -> None:
        if not self.host:
            logger.info("Email would be sent to %s: %s", email.to, email.subject)
            return
        msg = EmailMessage()
        msg["From"] = f'"{BRAND}" <{self.user}>'
        msg["To"] = email.to
        msg["Subject"] = email.subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(email.html, subtype="html")
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(msg)
        logger.info("Email sent to %s: %s", email.to, email.subject)


@dataclass
class Dispatcher:
    sender: EmailSender = field(default_factory=EmailSender)

    def deliver(self, event) -> None:
        """Render and send one event. Never raises."""
        try:
            for email in RENDERERS[type(event)](event):
                self.sender.send(email)
        except Exception:
            logger.exception("Failed to deliver %s notification", type(event).__name__)

    def outbox(self, background_tasks: BackgroundTasks) -> Callable:
        """Return an emit callable that queues events as background tasks."""
        def emit(event) -> None:
            background_tasks.add_task(self.deliver, event)
        return emit


dispatcher = Dispatcher()


def get_dispatcher() -> Dispatcher:
    return dispatcher

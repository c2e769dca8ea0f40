"""
Notification templates.

Turns a notification type plus its context dict into an email subject,
an HTML body and a plain text body. Rendering is pure: no I/O, no clock.

Every value taken from the context is HTML-escaped before it lands in
the HTML body. Optional details (clinic, meeting link, payment amount,
reasons, previous time) are left out when the context lacks them.

Typical usage:
    renderer = TemplateRenderer()
    content = renderer.render(
        NotificationType.APPOINTMENT_ACCEPTED,
        {"patientName": "Ann", "doctorName": "Lee",
         "appointmentDateTime": "2025-03-03T14:30:00+00:00"},
    )
    content.subject  # "Appointment Accepted"
"""

import html
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from models.notification import NotificationType

logger = logging.getLogger(__name__)

# Header colours per tone
BLUE = "#2563eb"
GREEN = "#059669"
RED = "#dc2626"
AMBER = "#f59e0b"


@dataclass
class RenderedContent:
    """Channel-ready content for one notification."""
    subject: str
    html: str
    text: str


def format_datetime(value: Any) -> str:
    """Format a datetime (or ISO-8601 string) for humans.

    Example: "Monday, March 3, 2025 at 2:30 PM UTC". Naive values are
    taken as UTC. Strings that don't parse are returned unchanged.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if not isinstance(value, datetime):
        return str(value)

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    hour = value.hour % 12 or 12
    return (
        f"{value:%A}, {value:%B} {value.day}, {value.year} "
        f"at {hour}:{value:%M} {value:%p} UTC"
    )


def format_amount(value: Any) -> str:
    """Format a payment amount as dollars with two decimals."""
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return str(value)


# ============================================================
# Body builder: collects HTML and text side by side
# ============================================================

@dataclass
class _Body:
    html_parts: List[str] = field(default_factory=list)
    text_lines: List[str] = field(default_factory=list)

    def para(self, text: str, strong: Optional[str] = None) -> "_Body":
        """Add a paragraph. `text` is escaped here, so pass raw values."""
        if strong:
            self.html_parts.append(
                f"<p><strong>{html.escape(strong)}</strong> {html.escape(text)}</p>"
            )
            self.text_lines.append(f"{strong} {text}")
        else:
            self.html_parts.append(f"<p>{html.escape(text)}</p>")
            self.text_lines.append(text)
        self.text_lines.append("")
        return self

    def details(self, rows: List[Tuple[str, Optional[str]]]) -> "_Body":
        """Add a boxed label/value list. Rows with no value are dropped."""
        rows = [(label, value) for label, value in rows if value]
        if not rows:
            return self
        inner = "".join(
            f"<p><strong>{html.escape(label)}:</strong> {html.escape(value)}</p>"
            for label, value in rows
        )
        self.html_parts.append(
            '<div style="background-color:#f3f4f6;padding:20px;'
            f'border-radius:8px;margin:20px 0;">{inner}</div>'
        )
        self.text_lines.extend(f"{label}: {value}" for label, value in rows)
        self.text_lines.append("")
        return self

    def bullets(self, items: List[str]) -> "_Body":
        self.html_parts.append(
            "<ul>" + "".join(f"<li>{html.escape(i)}</li>" for i in items) + "</ul>"
        )
        self.text_lines.extend(f"- {i}" for i in items)
        self.text_lines.append("")
        return self

    def link(self, label: str, url: Optional[str]) -> "_Body":
        """Add a call-to-action link; skipped when url is empty."""
        if not url:
            return self
        safe = html.escape(url, quote=True)
        self.html_parts.append(
            f'<p><strong>{html.escape(label)}:</strong></p>'
            f'<p><a href="{safe}" style="color:{BLUE};">{safe}</a></p>'
        )
        self.text_lines.append(f"{label}: {url}")
        self.text_lines.append("")
        return self


class _Context:
    """Read-only view over a template context with string coercion."""

    def __init__(self, data: Optional[Dict[str, Any]]):
        self._data = data or {}

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._data.get(key)
        if value is None or value == "":
            return default
        return str(value)

    def when(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        if value is None or value == "":
            return None
        return format_datetime(value)

    def amount(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        if value is None or value == "":
            return None
        return format_amount(value)

    def patient(self) -> str:
        return self.get("patientName", "Patient")

    def doctor(self) -> str:
        return f"Dr. {self.get('doctorName', 'your doctor')}"


# (subject, heading, colour, body)
_Rendered = Tuple[str, str, str, _Body]


# ============================================================
# Per-type templates
# ============================================================

def _appointment_booked(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    body.para("Your appointment request has been submitted successfully.")
    body.details([
        ("Doctor", ctx.doctor()),
        ("Date & Time", ctx.when("appointmentDateTime")),
        ("Type", ctx.get("appointmentType")),
        ("Clinic", ctx.get("clinicName")),
        ("Address", ctx.get("clinicAddress")),
    ])
    body.para(
        "Please wait for the doctor to accept your appointment request. "
        "You will receive a confirmation email once accepted."
    )
    return "Appointment Booking Confirmation", "Appointment Booking Confirmation", BLUE, body


def _appointment_accepted(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    body.para(f"Great news! {ctx.doctor()} has accepted your appointment request.")
    body.details([
        ("Doctor", ctx.doctor()),
        ("Date & Time", ctx.when("appointmentDateTime")),
        ("Type", ctx.get("appointmentType")),
    ])
    body.para(
        "Please complete your payment within 15 minutes before the "
        "appointment to confirm your booking.",
        strong="Next Step:",
    )
    return "Appointment Accepted", "Appointment Accepted!", GREEN, body


def _appointment_rejected(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    when = ctx.when("appointmentDateTime")
    body.para(
        f"We regret to inform you that {ctx.doctor()} cannot accept your "
        f"appointment request" + (f" for {when}." if when else ".")
    )
    reason = ctx.get("rejectionReason") or ctx.get("reason")
    if reason:
        body.para(reason, strong="Reason:")
    else:
        body.para(
            "This could be due to scheduling conflicts or other "
            "unavoidable circumstances."
        )
    body.para("We encourage you to:")
    body.bullets([
        "Book an appointment with another available doctor",
        "Choose a different time slot",
        "Contact our support team if you need assistance",
    ])
    return "Appointment Request Declined", "Appointment Request Declined", RED, body


def _appointment_cancelled(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    when = ctx.when("appointmentDateTime")
    body.para(
        f"Your appointment with {ctx.doctor()}"
        + (f" on {when}" if when else "")
        + " has been cancelled."
    )
    reason = ctx.get("cancellationReason") or ctx.get("reason")
    if reason:
        body.para(reason, strong="Reason:")
    refund = ctx.amount("refundAmount")
    if refund:
        body.para(f"A refund of {refund} will be issued to your original payment method.")
    body.para("You can book a new appointment at any time.")
    return "Appointment Cancelled", "Appointment Cancelled", RED, body


def _appointment_rescheduled(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    body.para(f"Your appointment with {ctx.doctor()} has been rescheduled.")
    body.details([
        ("Previous Date & Time", ctx.when("previousDateTime")),
        ("New Date & Time", ctx.when("appointmentDateTime")),
        ("Type", ctx.get("appointmentType")),
        ("Clinic", ctx.get("clinicName")),
        ("Address", ctx.get("clinicAddress")),
    ])
    body.para("If the new time does not work for you, please reschedule or cancel from your dashboard.")
    return "Appointment Rescheduled", "Appointment Rescheduled", AMBER, body


def _appointment_reminder(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    time_text = ctx.get("timeText")
    if time_text:
        body.para(f"This is a reminder that your appointment starts in {time_text}.")
    else:
        body.para("This is a reminder about your upcoming appointment.")
    body.details([
        ("Doctor", ctx.doctor()),
        ("Date & Time", ctx.when("appointmentDateTime")),
        ("Type", ctx.get("appointmentType")),
        ("Clinic", ctx.get("clinicName")),
        ("Address", ctx.get("clinicAddress")),
    ])
    body.link("Join Meeting", ctx.get("meetingLink"))
    body.para(
        "Please arrive on time for your appointment. If you need to "
        "reschedule or cancel, please do so at least 2 hours in advance."
    )
    return "Appointment Reminder", "Appointment Reminder", AMBER, body


def _meeting_link_ready(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    body.para(
        "Your online consultation link is now ready for your appointment "
        f"with {ctx.doctor()}."
    )
    body.details([("Date & Time", ctx.when("appointmentDateTime"))])
    body.link("Meeting Link", ctx.get("meetingLink"))
    body.para(
        "Please test your camera and microphone before the appointment time.",
        strong="Important:",
    )
    return "Online Consultation Link Ready", "Online Consultation Link Ready", BLUE, body


def _payment_confirmed(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.patient()},")
    body.para(
        "Your payment has been successfully processed and your appointment "
        "is now confirmed!"
    )
    body.details([
        ("Doctor", ctx.doctor()),
        ("Date & Time", ctx.when("appointmentDateTime")),
        ("Type", ctx.get("appointmentType")),
        ("Amount Paid", ctx.amount("paymentAmount")),
    ])
    body.para("You will receive appointment reminders closer to your scheduled time.")
    return "Payment Confirmation", "Payment Confirmed", GREEN, body


def _doctor_verified(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.doctor()},")
    body.para(
        "Your profile has been verified. Patients can now find you and "
        "send you appointment requests."
    )
    return "Doctor Profile Verified", "Profile Verified", GREEN, body


def _doctor_rejected(ctx: _Context) -> _Rendered:
    body = _Body()
    body.para(f"Dear {ctx.doctor()},")
    body.para("We were unable to verify your doctor profile.")
    reason = ctx.get("rejectionReason") or ctx.get("reason")
    if reason:
        body.para(reason, strong="Reason:")
    body.para(
        "Please review the documents you submitted and apply again, or "
        "contact our support team for help."
    )
    return "Doctor Verification Unsuccessful", "Verification Unsuccessful", RED, body


_TEMPLATES: Dict[NotificationType, Callable[[_Context], _Rendered]] = {
    NotificationType.APPOINTMENT_BOOKED: _appointment_booked,
    NotificationType.APPOINTMENT_ACCEPTED: _appointment_accepted,
    NotificationType.APPOINTMENT_REJECTED: _appointment_rejected,
    NotificationType.APPOINTMENT_CANCELLED: _appointment_cancelled,
    NotificationType.APPOINTMENT_RESCHEDULED: _appointment_rescheduled,
    NotificationType.APPOINTMENT_REMINDER: _appointment_reminder,
    NotificationType.MEETING_LINK_READY: _meeting_link_ready,
    NotificationType.PAYMENT_CONFIRMED: _payment_confirmed,
    NotificationType.DOCTOR_VERIFIED: _doctor_verified,
    NotificationType.DOCTOR_REJECTED: _doctor_rejected,
}


# ============================================================
# Renderer
# ============================================================

def build_notification_html(
    title: str,
    body: str,
    color: str = BLUE,
    footer: str = "PatientCare Team",
) -> str:
    """Wrap rendered body HTML in the shared email layout.

    Args:
        title: Heading text (escaped here).
        body: Body HTML, already escaped by the caller.
        color: Heading colour.
        footer: Signature line (escaped here).

    Returns:
        Complete HTML string for the email body.
    """
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="margin:0;padding:0;background:#ffffff;">
  <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;color:#111827;">
    <h2 style="color:{color};">{html.escape(title)}</h2>
    {body}
    <p>Best regards,<br>{html.escape(footer)}</p>
  </div>
</body>
</html>"""


class TemplateRenderer:
    """Maps (type, context) to subject, HTML and text.

    Args:
        team_name: Signature used at the bottom of every message.
    """

    def __init__(self, team_name: str = "PatientCare Team"):
        self.team_name = team_name

    def render(
        self,
        notification_type: Union[NotificationType, str],
        context: Optional[Dict[str, Any]] = None,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> RenderedContent:
        """Render content for a notification.

        Args:
            notification_type: Type selecting the template.
            context: Template values (patientName, doctorName, ...).
            title: Notification title, used by the generic template.
            message: Notification message, used by the generic template.

        Returns:
            RenderedContent with subject, html and text.
        """
        try:
            notification_type = NotificationType(notification_type)
        except ValueError:
            logger.debug(f"No template for type {notification_type!r}, using generic")

        template = _TEMPLATES.get(notification_type)
        if template is None:
            return self._render_generic(notification_type, title, message)

        subject, heading, color, body = template(_Context(context))
        return self._finish(subject, heading, color, body)

    def _render_generic(
        self,
        notification_type: Union[NotificationType, str],
        title: Optional[str],
        message: Optional[str],
    ) -> RenderedContent:
        if not title:
            raw = getattr(notification_type, "value", notification_type)
            title = str(raw).replace("_", " ").title()
        body = _Body()
        for chunk in (message or "").split("\n\n"):
            if chunk.strip():
                body.para(chunk.strip())
        return self._finish(title, title, BLUE, body)

    def _finish(self, subject: str, heading: str, color: str, body: _Body) -> RenderedContent:
        text_lines = body.text_lines + ["Best regards,", self.team_name]
        return RenderedContent(
            subject=subject,
            html=build_notification_html(
                heading, "\n    ".join(body.html_parts), color, self.team_name
            ),
            text="\n".join(text_lines),
        )

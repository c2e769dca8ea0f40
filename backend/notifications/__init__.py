"""
Notification and reminder engine.

build_services() wires the components together for one database handle:

    PreferenceStore, TemplateRenderer
        → ChannelDispatcher
            → NotificationEngine
                → JobProcessor ← ReminderScheduler (shares the AppointmentSource)
"""

from dataclasses import dataclass
from typing import Optional

from config import Settings, get_settings
from notifications.appointments import AppointmentSource, StoreAppointmentSource
from notifications.dispatcher import ChannelDispatcher
from notifications.email_service import EmailService, EmailTransport
from notifications.engine import NotificationEngine
from notifications.preferences import PreferenceStore
from notifications.processor import JobProcessor
from notifications.reminders import ReminderScheduler
from notifications.templates import TemplateRenderer


@dataclass
class NotificationServices:
    preferences: PreferenceStore
    dispatcher: ChannelDispatcher
    engine: NotificationEngine
    reminders: ReminderScheduler
    processor: JobProcessor


def build_services(
    db,
    settings: Optional[Settings] = None,
    email_transport: Optional[EmailTransport] = None,
    appointments: Optional[AppointmentSource] = None,
) -> NotificationServices:
    """Construct the notification components around one database.

    Args:
        db: Connected SQLiteDatabase.
        settings: Settings to read (defaults to get_settings()).
        email_transport: EMAIL transport (defaults to SMTP from settings).
        appointments: Appointment lookup (defaults to the store).
    """
    settings = settings or get_settings()
    email_transport = email_transport or EmailService.from_settings(settings)
    appointments = appointments or StoreAppointmentSource(db)

    preferences = PreferenceStore(db)
    renderer = TemplateRenderer(team_name=f"{settings.smtp_from_name} Team")
    dispatcher = ChannelDispatcher(db, email_transport, renderer)
    engine = NotificationEngine(db, dispatcher, preferences)
    reminders = ReminderScheduler(db, appointments, settings.reminder_offsets_minutes)
    processor = JobProcessor(db, engine, appointments, settings.claim_timeout_minutes)

    return NotificationServices(
        preferences=preferences,
        dispatcher=dispatcher,
        engine=engine,
        reminders=reminders,
        processor=processor,
    )


__all__ = [
    "NotificationServices", "build_services",
    "AppointmentSource", "StoreAppointmentSource", "ChannelDispatcher",
    "EmailService", "EmailTransport", "NotificationEngine", "PreferenceStore",
    "JobProcessor", "ReminderScheduler", "TemplateRenderer",
]

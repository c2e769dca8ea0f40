"""
Appointment reminder router.

Called by the appointment workflow when an appointment is booked,
rescheduled or cancelled (internal key), or by an admin.
"""

import logging

from fastapi import APIRouter, Depends

from models.scheduled_job import ScheduledJob
from notifications import NotificationServices
from routers.auth import require_admin, require_admin_or_internal
from routers.notifications import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications/appointments", tags=["reminders"])


def _serialize_job(job: ScheduledJob) -> dict:
    return job.model_dump(mode="json")


@router.get("/{appointment_id}/reminders", dependencies=[Depends(require_admin)])
async def list_reminders(
    appointment_id: str,
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Pending reminder jobs for an appointment, earliest first."""
    jobs = await services.reminders.get_appointment_reminders(appointment_id)
    return {"reminders": [_serialize_job(j) for j in jobs]}


@router.post("/{appointment_id}/reminders", status_code=201,
             dependencies=[Depends(require_admin_or_internal)])
async def create_reminders(
    appointment_id: str,
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Schedule reminders for a newly confirmed appointment."""
    jobs = await services.reminders.create_appointment_reminders(appointment_id)
    return {"reminders": [_serialize_job(j) for j in jobs]}


@router.put("/{appointment_id}/reminders",
            dependencies=[Depends(require_admin_or_internal)])
async def update_reminders(
    appointment_id: str,
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Replace reminders after the appointment was rescheduled."""
    jobs = await services.reminders.update_appointment_reminders(appointment_id)
    return {"reminders": [_serialize_job(j) for j in jobs]}


@router.delete("/{appointment_id}/reminders",
               dependencies=[Depends(require_admin_or_internal)])
async def cancel_reminders(
    appointment_id: str,
    services: NotificationServices = Depends(get_services),
) -> dict:
    """Cancel pending reminders of a cancelled appointment."""
    cancelled = await services.reminders.cancel_appointment_reminders(appointment_id)
    return {"cancelled": cancelled}

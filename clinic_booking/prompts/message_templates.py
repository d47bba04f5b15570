"""User-facing message texts for the chat flow and reminders."""

from datetime import datetime

from clinic_booking.clinic_time import ZoneLike, format_date, format_short_date, format_time
from clinic_booking.schemas.booking_schema import Appointment, Slot
from clinic_booking.tools.services import SERVICE_CATALOG, service_title

SERVICES_MENU_TITLE = "Our services"
SERVICES_MENU_BODY = "Pick a service to book your appointment \U0001F447\n(Or just type it)"
SERVICES_MENU_BUTTON = "View services"

DAY_EXAMPLES = '"tomorrow", "friday", "next tuesday", "next week", "june 14" or "in june"'

POST_BOOKING_OPTIONS = "1) Confirm\n2) Reschedule\n3) Cancel"

ASK_NAME_AGAIN = "Please send me your *full name* \U0001F642"
ASK_PHONE = "Thanks. Now send me your *phone number* (e.g. 8295551234) to complete the booking."
PHONE_REPROMPT = "That number looks incomplete \U0001F64F\nSend it like this: 8295551234"
SLOT_REPROMPT = (
    "I didn't catch the time \U0001F64F\n"
    "Reply with the *number* (1, 2, 3...) or the *time* (e.g. 10:00 am)."
)
NO_AVAILABILITY = (
    "I don't see any openings in that range \U0001F64F\n"
    'Tell me another day (e.g. "next friday") or a month (e.g. "in june").'
)
NEW_APPOINTMENT = "Sure ✅ Let's book a new appointment.\nPick a service:"
WHICH_SERVICE = "Sure ✅ Which service would you like?"
CANCELLED = (
    "Done ✅ Your appointment has been cancelled.\n\n"
    'If you want to book a new one, type "new appointment" or tell me the service.'
)
NO_APPOINTMENT_FOUND = (
    "I couldn't find an upcoming appointment for this chat \U0001F64F\n"
    "Tell me the service if you'd like to book one."
)
URGENT_GUIDANCE = (
    "⚠️ For *emergencies*, briefly describe what is happening "
    "(pain, bleeding, swelling, a blow) and our team will help you right away.\n\n"
    "If it is a severe emergency, call emergency services or go to the nearest hospital."
)
BOOKING_STOPPED = "No problem, I've stopped this booking ✅\nTell me the service whenever you're ready."
RESCHEDULE_STOPPED = "No problem ✅ Your appointment stays as it was."
SLOT_TAKEN = (
    "Sorry, that time was just taken \U0001F64F\n"
    f"Which other day works for you? e.g. {DAY_EXAMPLES}."
)
APPOINTMENT_UNAVAILABLE = (
    "That appointment can no longer be changed \U0001F64F\n"
    "Tell me the service if you'd like to book a new one."
)
TRY_AGAIN = "Sorry, something went wrong on our side \U0001F64F Please try again in a moment."
FALLBACK_REPLY = "Hi \U0001F44B Would you like to book an appointment? Type the service or I can show you the menu."


def services_intro(clinic_name: str) -> str:
    """Greeting with the typed list of services, shown before the selection menu."""
    lines = [
        f"\U0001F44B Hi! I'm the assistant for *{clinic_name}*.",
        "",
        "Choose an option:",
        "",
        "A) Type the service you need:",
    ]
    lines.extend(f"{info['emoji']} {info['title']}" for info in SERVICE_CATALOG.values())
    lines.extend(["", f"B) Or tap *“{SERVICES_MENU_BUTTON}”* to pick from the menu \U0001F447"])
    return "\n".join(lines)


def ask_for_day(service: str) -> str:
    return (
        f"Great ✅ you'd like an appointment for *{service_title(service)}*.\n\n"
        f"Which day works for you?\ne.g. {DAY_EXAMPLES}."
    )


def day_reprompt() -> str:
    return f"To choose a day, you can write: {DAY_EXAMPLES}."


def slot_list(service: str, slots: list[Slot], tz: ZoneLike) -> str:
    """Numbered slot list; the index shown is the ordinal the user replies with."""
    first_day = format_date(slots[0].start, tz)
    multi_day = any(format_date(s.start, tz) != first_day for s in slots)
    lines = []
    for i, slot in enumerate(slots, start=1):
        span = f"{format_time(slot.start, tz)} - {format_time(slot.end, tz)}"
        if multi_day:
            span = f"{format_short_date(slot.start, tz)}, {span}"
        lines.append(f"{i}. {span}")
    header = (
        f"Here are the available times for *{service_title(service)}*"
        + ("" if multi_day else f" on *{first_day}*")
        + ":"
    )
    return (
        f"{header}\n\n" + "\n".join(lines)
        + "\n\nReply with the *number* (1, 2, 3...) or type the *time* (e.g. 10:00 am)."
    )


def slot_selected(slot: Slot, tz: ZoneLike) -> str:
    return (
        f"Great ✅ {format_time(slot.start, tz)} on {format_date(slot.start, tz)} is selected.\n"
        "Now tell me your *full name* to book it."
    )


def booking_confirmation(appointment: Appointment, tz: ZoneLike, address: str) -> str:
    return (
        "✅ *Appointment booked*\n\n"
        f"\U0001F9B7 Service: *{service_title(appointment.service)}*\n"
        f"\U0001F464 Patient: *{appointment.patient_name}*\n"
        f"\U0001F4DE Phone: *{appointment.phone}*\n"
        f"\U0001F4C5 Date: *{format_date(appointment.start, tz)}*\n"
        f"⏰ Time: *{format_time(appointment.start, tz)}*\n"
        f"\U0001F4CD Address: {address or '-'}\n\n"
        "If you need to *reschedule* or *cancel*, just write it here."
    )


def reschedule_confirmation(service: str, start: datetime, tz: ZoneLike) -> str:
    return (
        "✅ *Appointment rescheduled*\n\n"
        f"\U0001F9B7 Service: *{service_title(service)}*\n"
        f"\U0001F4C5 Date: *{format_date(start, tz)}*\n"
        f"⏰ Time: *{format_time(start, tz)}*\n\n"
        "If you need to *reschedule* or *cancel* again, just write it here."
    )


def reschedule_start(service: str) -> str:
    return (
        f"Sure ✅ Let's move your *{service_title(service)}* appointment.\n"
        f"Which day works better?\ne.g. {DAY_EXAMPLES}."
    )


def confirmed_summary(appointment: Appointment, tz: ZoneLike) -> str:
    return (
        "Perfect! ✅\nYour appointment is confirmed.\n\n"
        f"\U0001F9B7 Service: {service_title(appointment.service)}\n"
        f"\U0001F4C5 Date: {format_date(appointment.start, tz)}\n"
        f"⏰ Time: {format_time(appointment.start, tz)}\n\n"
        "If you need to *reschedule* or *cancel*, just write it here."
    )


def post_booking_reprompt() -> str:
    return (
        "I'm here ✅ What would you like to do with your appointment?\n\n"
        f"{POST_BOOKING_OPTIONS}\n\n"
        'For a *new appointment*, type "new appointment".'
    )


def day_before_reminder(start: datetime, tz: ZoneLike, clinic_name: str) -> str:
    return (
        f"Reminder \U0001F9B7: you have an appointment tomorrow at {format_time(start, tz)} "
        f"at {clinic_name}.\n\nReply:\n{POST_BOOKING_OPTIONS}"
    )


def hours_before_reminder(start: datetime, tz: ZoneLike, clinic_name: str, address: str) -> str:
    return (
        f"Reminder \U0001F9B7: your appointment is today at {format_time(start, tz)} "
        f"at {clinic_name}.\nAddress: {address or '-'}\n\nReply:\n{POST_BOOKING_OPTIONS}"
    )


def cancel_check(appointment: Appointment, tz: ZoneLike) -> str:
    return (
        f"You have *{service_title(appointment.service)}* on "
        f"{format_date(appointment.start, tz)} at {format_time(appointment.start, tz)}.\n\n"
        "To cancel it, reply *3* again or write *cancel*. To keep it, reply *1*."
    )

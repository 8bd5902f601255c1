"""
Notification texts and MJML email templates
Push and SMS texts are keyed by (kind, variant) and locale; "en" is the fallback locale.
"""

from typing import Optional

from ..domain.bookings.enums import NotificationKind

FALLBACK_LOCALE = "en"

THEME = {
    "primary": "#1f4e79",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_muted": "#64748b",
}

PUSH_TEXTS = {
    (NotificationKind.JOB_CREATED, "regular"): {
        "sv": "Ny bokning för {language}tolk {duration}min {due}",
        "en": "New booking for {language} interpreter {duration}min {due}",
    },
    (NotificationKind.JOB_CREATED, "immediate"): {
        "sv": "Ny akutbokning för {language}tolk {duration}min",
        "en": "New immediate booking for {language} interpreter {duration}min",
    },
    (NotificationKind.JOB_ACCEPTED, "customer"): {
        "sv": (
            "Din bokning för {language}tolk, {duration}min, {due} har accepterats av en tolk. "
            "Vänligen öppna appen för att se detaljer om tolken."
        ),
        "en": (
            "Your booking for {language} interpreter, {duration}min, {due} has been accepted. "
            "Open the app to see the interpreter's details."
        ),
    },
    (NotificationKind.JOB_ACCEPTED, "translator"): {
        "sv": "Du har nu accepterat och fått bokningen för {language}tolk {duration}min {due}",
        "en": "You have accepted and been given the booking for {language} interpreter {duration}min {due}",
    },
    (NotificationKind.JOB_CANCELLED, "translator"): {
        "sv": (
            "Kunden har avbokat bokningen för {language}tolk, {duration}min, {due}. "
            "Var god och kolla dina tidigare bokningar för detaljer."
        ),
        "en": (
            "The customer has cancelled the booking for {language} interpreter, {duration}min, {due}. "
            "Check your previous bookings for details."
        ),
    },
    (NotificationKind.JOB_CANCELLED, "customer"): {
        "sv": (
            "Er {language}tolk, {duration}min {due}, har avbokat tolkningen. "
            "Vi letar nu efter en ny tolk som kan ersätta denne. Tack."
        ),
        "en": (
            "Your {language} interpreter, {duration}min {due}, has cancelled. "
            "We are now looking for a replacement. Thank you."
        ),
    },
    (NotificationKind.SESSION_REMINDER, "default"): {
        "sv": (
            "Detta är en påminnelse om att du har en {language}tolkning ({session_type}) kl {due_time} "
            "på {due_date} som varar i {duration} min. Lycka till och kom ihåg att ge feedback efter "
            "utförd tolkning!"
        ),
        "en": (
            "Reminder: you have a {language} interpretation ({session_type}) at {due_time} on {due_date} "
            "lasting {duration} min. Good luck, and remember to leave feedback afterwards!"
        ),
    },
    (NotificationKind.JOB_EXPIRED, "default"): {
        "sv": (
            "Tyvärr har ingen tolk accepterat er bokning: ({language}, {duration}min, {due}). "
            "Vänligen pröva boka om tiden."
        ),
        "en": (
            "Unfortunately no interpreter accepted your booking ({language}, {duration}min, {due}). "
            "Please try booking another time."
        ),
    },
}

SMS_TEXTS = {
    (NotificationKind.JOB_CREATED, "phone"): {
        "sv": (
            "Bokningsinfo: Telefontolkning ({language}) den {date} kl {time}, {duration_text}. "
            "Bokningsnummer #{job_id}. Svara i appen om du kan ta uppdraget."
        ),
        "en": (
            "Booking info: phone interpretation ({language}) on {date} at {time}, {duration_text}. "
            "Booking #{job_id}. Reply in the app if you can take it."
        ),
    },
    (NotificationKind.JOB_CREATED, "physical"): {
        "sv": (
            "Bokningsinfo: Platstolkning ({language}) i {city} den {date} kl {time}, {duration_text}. "
            "Bokningsnummer #{job_id}. Svara i appen om du kan ta uppdraget."
        ),
        "en": (
            "Booking info: on-site interpretation ({language}) in {city} on {date} at {time}, "
            "{duration_text}. Booking #{job_id}. Reply in the app if you can take it."
        ),
    },
}

# (kind, variant) -> (template name, subject)
EMAIL_MESSAGES = {
    (NotificationKind.JOB_CREATED, "default"): (
        "job-created",
        "Vi har mottagit er tolkbokning. Bokningsnr: #{job_id}",
    ),
    (NotificationKind.JOB_ACCEPTED, "customer"): (
        "job-accepted",
        "Bekräftelse - tolk har accepterat er bokning (bokning # {job_id})",
    ),
    (NotificationKind.JOB_ACCEPTED, "translator"): (
        "job-changed-translator-new-translator",
        "Bekräftelse - tolk har accepterat er bokning (bokning # {job_id})",
    ),
    (NotificationKind.JOB_WITHDRAWN, "default"): (
        "status-changed-from-pending-or-assigned-customer",
        "Avbokning av bokningsnr: #{job_id}",
    ),
    (NotificationKind.JOB_CANCELLED, "customer"): (
        "status-changed-from-pending-or-assigned-customer",
        "Information om avslutad tolkning för bokningsnummer #{job_id}",
    ),
    (NotificationKind.JOB_CANCELLED, "translator"): (
        "job-cancel-translator",
        "Information om avslutad tolkning för bokningsnummer #{job_id}",
    ),
    (NotificationKind.JOB_REOPENED, "default"): (
        "job-reopened",
        "Vi har nu återöppnat er bokning av {language}tolk för bokning #{job_id}",
    ),
    (NotificationKind.SESSION_ENDED, "customer"): (
        "session-ended",
        "Information om avslutad tolkning för bokningsnummer # {job_id}",
    ),
    (NotificationKind.SESSION_ENDED, "translator"): (
        "session-ended",
        "Information om avslutad tolkning för bokningsnummer # {job_id}",
    ),
    (NotificationKind.TRANSLATOR_CHANGED, "customer"): (
        "job-changed-translator-customer",
        "Meddelande om tilldelning av tolkuppdrag för uppdrag #{job_id}",
    ),
    (NotificationKind.TRANSLATOR_CHANGED, "old_translator"): (
        "job-changed-translator-old-translator",
        "Meddelande om tilldelning av tolkuppdrag för uppdrag #{job_id}",
    ),
    (NotificationKind.TRANSLATOR_CHANGED, "new_translator"): (
        "job-changed-translator-new-translator",
        "Meddelande om tilldelning av tolkuppdrag för uppdrag #{job_id}",
    ),
    (NotificationKind.DATE_CHANGED, "default"): (
        "job-changed-date",
        "Meddelande om ändring av tolkbokning för uppdrag #{job_id}",
    ),
    (NotificationKind.LANGUAGE_CHANGED, "default"): (
        "job-changed-lang",
        "Meddelande om ändring av tolkbokning för uppdrag #{job_id}",
    ),
}

# Body lines per email template, formatted with the event payload
EMAIL_BODIES = {
    "job-created": ["Tack för er bokning av {language}tolk {due}, {duration} min."],
    "job-accepted": ["En tolk har accepterat er bokning av {language}tolk {due}, {duration} min."],
    "job-changed-translator-new-translator": ["Du har tilldelats bokningen för {language}tolk {due}, {duration} min."],
    "status-changed-from-pending-or-assigned-customer": ["Er bokning av {language}tolk {due} har avbokats."],
    "job-cancel-translator": ["Bokningen för {language}tolk {due} har avbokats."],
    "job-reopened": ["Er bokning av {language}tolk {due} är åter öppen för tolkar."],
    "session-ended": [
        "Tolkningen för {language}tolk {due} är avslutad.",
        "Tid: {session_time}. Underlag för {for_text}.",
    ],
    "job-changed-translator-customer": ["En ny tolk har tilldelats er bokning av {language}tolk {due}."],
    "job-changed-translator-old-translator": ["Du är inte längre tilldelad bokningen för {language}tolk {due}."],
    "job-changed-date": ["Bokningen har flyttats från {old_time} till {due}."],
    "job-changed-lang": ["Bokningen har ändrats från {old_lang}tolk till {language}tolk."],
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def _localized(texts: dict, locale: Optional[str]) -> str:
    return texts.get(locale or FALLBACK_LOCALE) or texts[FALLBACK_LOCALE]


def render_push(kind: NotificationKind, variant: str, locale: Optional[str], payload: dict) -> str:
    texts = PUSH_TEXTS.get((kind, variant)) or PUSH_TEXTS.get((kind, "default"))
    if texts is None:
        raise KeyError(f"No push text for {kind.value}/{variant}")
    return _localized(texts, locale).format_map(_Defaults(payload))


def render_sms(kind: NotificationKind, variant: str, locale: Optional[str], payload: dict) -> str:
    texts = SMS_TEXTS.get((kind, variant))
    if texts is None:
        raise KeyError(f"No SMS text for {kind.value}/{variant}")
    return _localized(texts, locale).format_map(_Defaults(payload))


def email_message(kind: NotificationKind, variant: str, payload: dict) -> tuple[str, str]:
    """(template name, subject) for an email event"""
    entry = EMAIL_MESSAGES.get((kind, variant)) or EMAIL_MESSAGES.get((kind, "default"))
    if entry is None:
        raise KeyError(f"No email template for {kind.value}/{variant}")
    template, subject = entry
    return template, subject.format_map(_Defaults(payload))


def email_template(template: str, subject: str, name: str, data: dict) -> str:
    """MJML document for a transactional booking email"""
    lines = EMAIL_BODIES.get(template, [])
    body = "".join(
        f'<mj-text font-size="15px" color="{THEME["text_primary"]}">{line.format_map(_Defaults(data))}</mj-text>'
        for line in lines
    )
    return f"""
    <mjml>
      <mj-head>
        <mj-title>{subject}</mj-title>
        <mj-preview>{subject}</mj-preview>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="{THEME['card_bg']}" padding="24px">
          <mj-column>
            <mj-text font-size="18px" font-weight="600" color="{THEME['primary']}">{subject}</mj-text>
            <mj-text font-size="15px" color="{THEME['text_primary']}">Hej {name},</mj-text>
            {body}
            <mj-text font-size="12px" color="{THEME['text_muted']}">DigitalTolk</mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """

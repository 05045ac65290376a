"""Form intake: validate, render, dispatch, respond.

All five public forms go through ``process_submission``; what differs
between them (fields, placeholders, channel, subjects, wording) lives
in the ``FORMS`` table below.
"""
import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationInfo, create_model, field_validator
from pydantic import Field as ModelField
from pydantic import ValidationError as ModelValidationError

from formrelay.config import Settings
from formrelay.services.email import (
    GENERAL,
    RECRUITING,
    Attachment,
    ChannelConfig,
    MailDispatcher,
    MailMessage,
)
from formrelay.services.renderer import (
    BRAND,
    Field,
    display_values,
    render_acknowledgment,
    render_notification,
)

logger = logging.getLogger(__name__)

NOT_PROVIDED = "Not provided"
NOT_SPECIFIED = "Not specified"

RESUME_ATTACHED = "Resume/CV is attached to this application."
NO_RESUME = "No resume attached."


class ValidationError(Exception):
    """The request is missing required fields or could not be parsed."""

    def __init__(self, message: str, missing: Optional[List[str]] = None, status_code: int = 400):
        super().__init__(message)
        self.missing = missing or []
        self.status_code = status_code


class SubmissionFields(BaseModel):
    """Base for the per-form models. Unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def absent_unless_text(cls, value: Any, info: ValidationInfo) -> Any:
        # optional values that are empty or not text fall back to their placeholder
        if cls.model_fields[info.field_name].is_required():
            return value
        return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class FormDefinition:
    kind: str
    title: str
    fields: Tuple[Field, ...]
    channel: str
    notification_subject: str
    acknowledgment_subject: str
    acknowledgment_sender: str
    acknowledgment_template: str
    footer_note: str
    success_message: str
    failure_message: str
    # 500 bodies differ per form: {error, details} or {message, error}
    failure_key: str = "error"
    detail_key: str = "details"
    id_key: Optional[str] = None
    accepts_attachment: bool = False
    name_field: str = "name"

    @property
    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    @cached_property
    def model(self) -> Type[SubmissionFields]:
        definitions: Dict[str, Any] = {}
        for f in self.fields:
            if f.required:
                definitions[f.name] = (str, ModelField(min_length=1))
            else:
                definitions[f.name] = (Optional[str], None)
        name = "".join(part.title() for part in self.kind.split("-")) + "Fields"
        return create_model(name, __base__=SubmissionFields, **definitions)


@dataclass
class Submission:
    kind: str
    values: Dict[str, Any]
    attachment: Optional[Attachment] = None

    @property
    def email(self) -> str:
        return self.values["email"]


FORMS: Dict[str, FormDefinition] = {
    "service-inquiry": FormDefinition(
        kind="service-inquiry",
        title="New Service Inquiry",
        fields=(
            Field("service", "Service"),
            Field("name", "Name"),
            Field("email", "Email"),
            Field("phone", "Phone", NOT_PROVIDED),
            Field("message", "Message", "No message provided"),
        ),
        channel=GENERAL,
        notification_subject="Service Inquiry: {service}",
        acknowledgment_subject=f"Thanks for contacting {BRAND} – {{service}}",
        acknowledgment_sender=f"{BRAND} Team",
        acknowledgment_template="email/service_ack.html",
        footer_note="This is an automated notification from your website's service inquiry form.",
        success_message="Service inquiry sent successfully",
        failure_message="Failed to send service inquiry",
        id_key="inquiryId",
    ),
    "partnership": FormDefinition(
        kind="partnership",
        title="New Partner Request",
        fields=(
            Field("name", "Name"),
            Field("company", "Company"),
            Field("email", "Email"),
            Field("phone", "Phone", NOT_PROVIDED),
            Field("location", "Location", NOT_PROVIDED),
            Field("website", "Website", NOT_PROVIDED),
            Field("partnershipNature", "Nature of Partnership", NOT_SPECIFIED),
            Field("productService", "Product/Service", NOT_SPECIFIED),
            Field("reason", "Reason", NOT_PROVIDED),
        ),
        channel=GENERAL,
        notification_subject="New Partner Request from {name}",
        acknowledgment_subject=f"Thank you for reaching out – {BRAND} Partnerships",
        acknowledgment_sender=f"{BRAND} Partnerships",
        acknowledgment_template="email/partner_ack.html",
        footer_note="This is an automated partner request submission from your website.",
        success_message="Partnership inquiry sent successfully!",
        failure_message="Failed to send partnership inquiry",
        failure_key="message",
        detail_key="error",
    ),
    "business-consultation": FormDefinition(
        kind="business-consultation",
        title="Business Consultation Request",
        fields=(
            Field("firstName", "Full Name"),
            Field("companyName", "Company Name", NOT_PROVIDED),
            Field("email", "Email"),
            Field("contactNumber", "Contact Number", NOT_PROVIDED),
            Field("address", "Location", NOT_PROVIDED),
            Field("industryType", "Industry Type", NOT_SPECIFIED),
            Field("service", "Selected Service"),
            Field("message", "Requirement", "No specific requirements provided"),
        ),
        channel=GENERAL,
        notification_subject="Business Consultation: {service}",
        acknowledgment_subject=f"Business Inquiry Received – {BRAND}",
        acknowledgment_sender=BRAND,
        acknowledgment_template="email/business_ack.html",
        footer_note="This is an automated business consultation inquiry from your website.",
        success_message="Business consultation request sent successfully!",
        failure_message="Failed to send business consultation request",
        name_field="firstName",
    ),
    "career-application": FormDefinition(
        kind="career-application",
        title="New Career Application",
        fields=(
            Field("fullName", "Name"),
            Field("email", "Email"),
            Field("phone", "Phone", NOT_PROVIDED),
            Field("role", "Role"),
            Field("type", "Applying For", NOT_SPECIFIED),
            Field("location", "Location", NOT_SPECIFIED),
            Field("linkedin", "LinkedIn", NOT_PROVIDED, link=True),
            Field("portfolio", "Portfolio", NOT_PROVIDED, link=True),
            Field("message", "Message", "No additional message"),
        ),
        channel=RECRUITING,
        notification_subject="New Career Application - {role}",
        acknowledgment_subject=f"Application Received – {{role}} at {BRAND}",
        acknowledgment_sender=f"{BRAND} HR",
        acknowledgment_template="email/career_ack.html",
        footer_note=NO_RESUME,
        success_message="Application submitted successfully! Acknowledgement sent.",
        failure_message="Failed to submit application",
        failure_key="message",
        detail_key="error",
        accepts_attachment=True,
        name_field="fullName",
    ),
    "contact": FormDefinition(
        kind="contact",
        title="New Contact Form Submission",
        fields=(
            Field("fullName", "Name"),
            Field("phone", "Phone", NOT_PROVIDED),
            Field("email", "Email"),
            Field("subject", "Subject"),
            Field("Dropdown", "Heard From", NOT_SPECIFIED),
            Field("message", "Message", "No message provided"),
        ),
        channel=GENERAL,
        notification_subject="New Contact Form: {subject}",
        acknowledgment_subject=f"We've received your message – {BRAND}",
        acknowledgment_sender=f"{BRAND} Support",
        acknowledgment_template="email/contact_ack.html",
        footer_note="This message was submitted through the website contact form.",
        success_message="Contact form submitted successfully & auto-reply sent",
        failure_message="Failed to send message",
        failure_key="message",
        detail_key="error",
        name_field="fullName",
    ),
}


def validate(form: FormDefinition, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate the parsed body against the form's model.

    Raises ValidationError naming every required field that is missing,
    empty or not a string.
    """
    try:
        fields = form.model.model_validate(dict(data))
    except ModelValidationError as exc:
        failed = {error["loc"][0] for error in exc.errors() if error["loc"]}
        missing = [name for name in form.required_fields if name in failed]
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing) from None
    return fields.model_dump()


def build_messages(
    form: FormDefinition,
    submission: Submission,
    channel: ChannelConfig,
) -> Tuple[MailMessage, MailMessage]:
    """Return (internal notification, acknowledgment) for a submission."""
    shown = display_values(form.fields, submission.values)

    footer_note = form.footer_note
    if form.accepts_attachment:
        footer_note = RESUME_ATTACHED if submission.attachment else NO_RESUME

    notification = MailMessage(
        sender=channel.mailbox,
        to=channel.mailbox,
        reply_to=submission.email,
        subject=form.notification_subject.format(**shown),
        html_body=render_notification(form.title, form.fields, submission.values, footer_note),
        attachments=[submission.attachment] if submission.attachment else [],
    )
    acknowledgment = MailMessage(
        sender=channel.sender(form.acknowledgment_sender),
        to=submission.email,
        subject=form.acknowledgment_subject.format(**shown),
        html_body=render_acknowledgment(form.acknowledgment_template, form.fields, submission.values),
    )
    return notification, acknowledgment


async def dispatch(form: FormDefinition, submission: Submission, dispatcher: MailDispatcher) -> str:
    """Send the notification, then the acknowledgment. Returns the notification id."""
    notification, acknowledgment = build_messages(form, submission, dispatcher.config(form.channel))

    notification_id = await dispatcher.send(form.channel, notification)
    logger.info("%s notification sent: %s", form.kind, notification_id)

    acknowledgment_id = await dispatcher.send(form.channel, acknowledgment)
    logger.info("%s acknowledgment sent: %s", form.kind, acknowledgment_id)
    return notification_id


async def process_submission(
    form: FormDefinition,
    data: Mapping[str, Any],
    dispatcher: MailDispatcher,
    settings: Settings,
    attachment: Optional[Attachment] = None,
) -> JSONResponse:
    """Run one submission end to end and build its only response."""
    try:
        values = validate(form, data)
    except ValidationError as exc:
        logger.info("Rejected %s submission: %s", form.kind, exc)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})

    submission = Submission(
        kind=form.kind,
        values=values,
        attachment=attachment if form.accepts_attachment else None,
    )
    logger.info("Processing %s from %s", form.kind, values[form.name_field])

    try:
        message_id = await dispatch(form, submission, dispatcher)
    except Exception as exc:
        logger.exception("Error sending %s emails", form.kind)
        body: Dict[str, Any] = {"success": False, form.failure_key: form.failure_message}
        if not settings.is_production:
            body[form.detail_key] = str(exc)
        return JSONResponse(status_code=500, content=body)

    body = {"success": True, "message": form.success_message}
    if form.id_key:
        body[form.id_key] = message_id
    return JSONResponse(content=body)

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from formrelay.config import Settings, get_settings
from formrelay.services.bodies import read_fields
from formrelay.services.email import MailDispatcher
from formrelay.services.intake import FORMS, ValidationError, process_submission

router = APIRouter(tags=["submissions"])


def get_dispatcher(request: Request) -> MailDispatcher:
    return request.app.state.dispatcher


async def submit(kind: str, request: Request, dispatcher: MailDispatcher, settings: Settings, file_field: Optional[str] = None):
    try:
        fields, attachment = await read_fields(request, file_field)
    except ValidationError as exc:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})
    return await process_submission(FORMS[kind], fields, dispatcher, settings, attachment)


@router.post("/sendservice")
async def send_service(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
):
    """Service inquiry: name, email and service are required."""
    return await submit("service-inquiry", request, dispatcher, settings)


@router.post("/sendpartner")
async def send_partner(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
):
    return await submit("partnership", request, dispatcher, settings)


@router.post("/sendbusiness")
async def send_business(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
):
    return await submit("business-consultation", request, dispatcher, settings)


@router.post("/career")
async def send_career(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
):
    """Career application, sent on the recruiting channel.

    Expects multipart/form-data; the optional ``resume`` file is attached
    to the internal notification only.
    """
    return await submit("career-application", request, dispatcher, settings, file_field="resume")


@router.post("/contact")
async def send_contact(
    request: Request,
    dispatcher: MailDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
):
    return await submit("contact", request, dispatcher, settings)

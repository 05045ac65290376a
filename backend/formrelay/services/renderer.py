"""HTML rendering for notification and acknowledgment emails.

Every form describes its fields declaratively (``Field``); absent
optional values are replaced by the field's placeholder before they
reach a template. Templates live under ``formrelay/templates/email``
and are rendered with autoescaping, so submitted values are always
HTML-escaped.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

BRAND = "Tragard"
SITE_URL = "https://tragardtest.netlify.app/"
SUPPORT_EMAIL = "tragardsupport@gmail.com"
ICON_URL = "https://i.postimg.cc/cJSkTrss/bluicon.png"
LOGO_URL = "https://i.postimg.cc/RVxtWfGV/logo1.png"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)
env.globals.update(
    brand=BRAND,
    site_url=SITE_URL,
    support_email=SUPPORT_EMAIL,
    icon_url=ICON_URL,
    logo_url=LOGO_URL,
)


@dataclass(frozen=True)
class Field:
    """One form field. A field without a placeholder is required."""

    name: str
    label: str
    placeholder: Optional[str] = None
    link: bool = False

    @property
    def required(self) -> bool:
        return self.placeholder is None


def provided(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def provided_values(fields: Sequence[Field], values: Mapping[str, Any]) -> Dict[str, str]:
    """Only the fields the submitter actually filled in."""
    return {f.name: values[f.name] for f in fields if provided(values.get(f.name))}


def display_values(fields: Sequence[Field], values: Mapping[str, Any]) -> Dict[str, str]:
    """Every field, with placeholders standing in for absent or non-string values."""
    shown = {}
    for f in fields:
        value = values.get(f.name)
        if provided(value):
            shown[f.name] = value
        elif f.required:
            shown[f.name] = "" if value is None else str(value)
        else:
            shown[f.name] = f.placeholder
    return shown


def render_notification(
    title: str,
    fields: Sequence[Field],
    values: Mapping[str, Any],
    footer_note: str,
) -> str:
    shown = display_values(fields, values)
    rows: List[Dict[str, Optional[str]]] = []
    for f in fields:
        href = values[f.name] if f.link and provided(values.get(f.name)) else None
        rows.append({"label": f.label, "value": shown[f.name], "href": href})
    return env.get_template("email/notification.html").render(
        title=title,
        rows=rows,
        footer_note=footer_note,
    )


def render_acknowledgment(
    template_name: str,
    fields: Sequence[Field],
    values: Mapping[str, Any],
) -> str:
    return env.get_template(template_name).render(
        fields=display_values(fields, values),
        provided=provided_values(fields, values),
    )

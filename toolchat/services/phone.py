import re

PHONE_PATTERN = re.compile(r"^\+\d{10,15}$")
TRANSPORT_PREFIX = "whatsapp:"


def normalize_phone(raw: str | None) -> str:
    """Strip the transport prefix and whitespace from an inbound phone number."""
    value = (raw or "").strip()
    if value.lower().startswith(TRANSPORT_PREFIX):
        value = value[len(TRANSPORT_PREFIX):]
    return re.sub(r"\s+", "", value)


def is_valid_phone(phone: str | None) -> bool:
    return bool(phone) and bool(PHONE_PATTERN.match(phone))


def whatsapp_session_id(phone: str) -> str:
    return "whatsapp_" + re.sub(r"\D", "", phone or "")

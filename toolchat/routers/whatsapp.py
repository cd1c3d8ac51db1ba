"""Inbound WhatsApp webhook. Always answers 200 text/plain so the provider never retries."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.logging_config import get_logger
from toolchat.services.phone import normalize_phone
from toolchat.services.whatsapp_service import MSG_FATAL_ERROR

logger = get_logger("whatsapp_webhook")

router = APIRouter(tags=["whatsapp"])

ACK_DELIVERED = "OK"
ACK_RATE_LIMITED = "Rate limit exceeded"
ACK_MISSING_FIELDS = "Missing required fields"


@router.post("/whatsapp", response_class=PlainTextResponse)
async def whatsapp_webhook(request: Request, container: ServiceContainer = Depends(get_container)) -> PlainTextResponse:
    """Handle a form-encoded message from the WhatsApp provider.

    When the reply could not be pushed through the transport, the reply text is
    returned as the body instead so the provider can still surface it.
    """
    from_number = ""
    try:
        form = await request.form()
        from_number = str(form.get("From") or "")
        body = str(form.get("Body") or "").strip()
        if not from_number or not body:
            logger.warning("WhatsApp webhook missing From/Body")
            return PlainTextResponse(ACK_MISSING_FIELDS, status_code=200)

        decision = await container.rate_limits.whatsapp.check(normalize_phone(from_number))
        if not decision.allowed:
            logger.warning("WhatsApp rate limit exceeded", extra={"context": {"from": from_number}})
            return PlainTextResponse(ACK_RATE_LIMITED, status_code=200)

        result = await container.whatsapp.handle_message(from_number, body)
        return PlainTextResponse(ACK_DELIVERED if result.delivered else result.reply, status_code=200)
    except Exception as exc:
        logger.error(
            "Error processing WhatsApp message",
            extra={"context": {"from": from_number, "error": str(exc)}},
            exc_info=True,
        )

    delivered = False
    if from_number:
        try:
            delivered = await container.whatsapp.deliver(normalize_phone(from_number), MSG_FATAL_ERROR)
        except Exception as exc:
            logger.error(f"Failed to send error message: {exc}")
    return PlainTextResponse(ACK_DELIVERED if delivered else MSG_FATAL_ERROR, status_code=200)

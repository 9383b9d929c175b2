"""Telegram notification sender.

Commands describe what happened by queueing a message on the runtime
context's outbox; :func:`flush_outbox` delivers the queue once the workbook
has been saved. Delivery is fire-and-forget: failures are logged and reported
through :class:`~taminot.core_logic.OperationResult`, never retried.
"""

from __future__ import annotations

import html
from typing import List, Optional

import requests

from . import core_logic, data_manager, log
from .constants import RequestStatus
from .core_logic import OperationResult, RuntimeContext, TelegramConfig


TELEGRAM_SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"
TEST_MESSAGE = "✅ <b>Test message</b>\n\nTaminot is connected to this Telegram chat."

STATUS_LABELS = {
    RequestStatus.PENDING.value: "⏳ Pending",
    RequestStatus.APPROVED.value: "✅ Approved",
    RequestStatus.REJECTED.value: "❌ Rejected",
}


def send_telegram_message(config: TelegramConfig, text: str, *, timeout: float = 10.0) -> OperationResult:
    """Post ``text`` to the configured chat using HTML parse mode.

    Args:
        config (TelegramConfig): Bot token and destination chat.
        text (str): Message body, already HTML-escaped where needed.
        timeout (float): Seconds before the HTTP call is abandoned.

    Returns:
        OperationResult: ``ok`` when Telegram accepted the message, otherwise
            ``failure`` with the reason.
    """
    if not config.is_configured:
        return OperationResult.failure("Telegram bot token and chat id are not configured")

    try:
        response = requests.post(
            TELEGRAM_SEND_URL.format(token=config.bot_token),
            json={"chat_id": config.chat_id, "text": text, "parse_mode": "HTML"},
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        log.warning("Telegram delivery failed: %s", exc)
        return OperationResult.failure(f"Telegram delivery failed: {exc}")

    log.info("Delivered Telegram message to chat '%s'", config.chat_id)
    return OperationResult.ok()


def format_requisition(requisition: data_manager.RequisitionRow, headline: str) -> str:
    """Render a requisition as a short HTML message."""
    lines = [
        f"<b>{html.escape(headline)}</b>",
        "",
        f"🏥 {html.escape(requisition.org_name)}",
        f"📦 {html.escape(requisition.product_name)}"
        + (f" ({html.escape(requisition.variant)})" if requisition.variant else ""),
        f"🔢 {requisition.quantity} {html.escape(requisition.unit)}",
    ]
    if requisition.blood_group:
        lines.append(f"🩸 {html.escape(requisition.blood_group)}")
    if requisition.patient_name:
        lines.append(f"👤 {html.escape(requisition.patient_name)}")
    if requisition.comment:
        lines.append(f"💬 {html.escape(requisition.comment)}")
    lines.append(f"Status: {STATUS_LABELS.get(requisition.status, requisition.status)}")
    return "\n".join(lines)


def queue_message(context: RuntimeContext, text: str) -> None:
    """Add a message to the outbox delivered by :func:`flush_outbox`."""
    context.outbox.append(text)


def queue_requisition_event(context: RuntimeContext, requisition: data_manager.RequisitionRow, headline: str) -> None:
    """Queue the standard requisition message under ``headline``."""
    queue_message(context, format_requisition(requisition, headline))


def flush_outbox(context: RuntimeContext, *, config: Optional[TelegramConfig] = None) -> List[OperationResult]:
    """Deliver and clear every queued message.

    When Telegram is not configured the queue is dropped with a debug log, so
    installations without a bot keep working.

    Args:
        context (RuntimeContext): Context whose outbox should be delivered.
        config (TelegramConfig | None): Override; read from the workbook
            settings when omitted.

    Returns:
        list[OperationResult]: One result per delivered message.
    """
    messages = list(context.outbox)
    context.outbox.clear()
    if not messages:
        return []

    config = config or core_logic.get_telegram_config(context)
    if not config.is_configured:
        log.debug("Telegram not configured; dropped %d queued messages", len(messages))
        return []

    timeout = context.settings.request_timeout
    return [send_telegram_message(config, text, timeout=timeout) for text in messages]


def send_test_message(context: RuntimeContext) -> OperationResult:
    """Send the connection check message with the stored settings."""
    return send_telegram_message(
        core_logic.get_telegram_config(context),
        TEST_MESSAGE,
        timeout=context.settings.request_timeout,
    )

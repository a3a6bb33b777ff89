# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Routing of verified Deffatest webhooks to notification handlers.

Event kinds form a closed enum with an explicit UNRECOGNIZED member, so an
unknown kind string from the backend is logged and dropped instead of
reaching a handler. Handlers build and send the Slack notifications.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Type

from pydantic import BaseModel, ValidationError

from deffatest_bot.errors import PayloadError
from deffatest_bot.logging_config import LogContext, get_logger
from deffatest_bot.models import (
    BugsFoundData,
    RunCompletedData,
    RunFailedData,
    WebhookEnvelope,
)


logger = get_logger(__name__)


class WebhookEventKind(str, Enum):
    """Kinds of webhook events sent by the Deffatest backend."""
    TEST_COMPLETED = "test.completed"
    TEST_FAILED = "test.failed"
    BUGS_FOUND = "bugs.found"
    TEST_PROGRESS = "test.progress"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_wire(cls, value: Any) -> "WebhookEventKind":
        """Map a wire kind string onto the enum, never raising."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNRECOGNIZED


# Kinds that are acknowledged without notifying anyone
IGNORED_KINDS = frozenset({WebhookEventKind.TEST_PROGRESS})

PAYLOAD_MODELS: Dict[WebhookEventKind, Type[BaseModel]] = {
    WebhookEventKind.TEST_COMPLETED: RunCompletedData,
    WebhookEventKind.TEST_FAILED: RunFailedData,
    WebhookEventKind.BUGS_FOUND: BugsFoundData,
}

WebhookHandler = Callable[[BaseModel], Awaitable[None]]


class WebhookRouter:
    """
    Dispatches verified webhook bodies by event kind.

    Handlers are registered per kind and receive the typed payload model
    for that kind.
    """

    def __init__(self):
        self.handlers: Dict[WebhookEventKind, WebhookHandler] = {}

    def register(self, kind: WebhookEventKind, handler: WebhookHandler) -> None:
        """
        Register a handler for a specific event kind.

        Args:
            kind: Event kind the handler receives
            handler: Async function taking the typed payload

        Raises:
            ValueError: If the kind never carries a dispatchable payload
        """
        if kind not in PAYLOAD_MODELS:
            raise ValueError(f"Cannot register a handler for {kind.value}")

        self.handlers[kind] = handler
        logger.info("Webhook handler registered", extra={
            'event_kind': kind.value,
            'handler': getattr(handler, '__name__', repr(handler))
        })

    async def dispatch(self, payload: Dict[str, Any]) -> WebhookEventKind:
        """
        Dispatch a verified webhook body.

        Args:
            payload: Parsed JSON body of the webhook

        Returns:
            The event kind the body resolved to

        Raises:
            PayloadError: If the body or its data does not match the kind
        """
        try:
            envelope = WebhookEnvelope.model_validate(payload)
        except ValidationError as e:
            logger.warning("Webhook body is not a valid envelope", extra={
                'error_count': e.error_count()
            })
            raise PayloadError("Webhook body is not a valid envelope") from e

        kind = WebhookEventKind.from_wire(envelope.event)
        logger.info("Webhook received", extra={'event_kind': kind.value})

        if kind is WebhookEventKind.UNRECOGNIZED:
            logger.debug("Unknown webhook event", extra={'event': envelope.event[:64]})
            return kind

        if kind in IGNORED_KINDS:
            return kind

        try:
            data = PAYLOAD_MODELS[kind].model_validate(envelope.data)
        except ValidationError as e:
            logger.warning("Webhook data does not match event kind", extra={
                'event_kind': kind.value,
                'error_count': e.error_count()
            })
            raise PayloadError(f"Invalid data for {kind.value}") from e

        handler = self.handlers.get(kind)
        if handler is None:
            logger.warning("No handler registered for webhook event", extra={
                'event_kind': kind.value
            })
            return kind

        with LogContext(webhook_event=kind.value, webhook_test_id=data.test_id):
            await handler(data)

        return kind

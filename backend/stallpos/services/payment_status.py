# Overview: Pure classification of provider payment states for client polling.

from __future__ import annotations

import re
from enum import Enum


class PollStatus(str, Enum):
    KEEP_POLLING = "keep_polling"
    TERMINAL_SUCCESS = "terminal_success"
    TERMINAL_FAILURE = "terminal_failure"


INTENT_SUCCEEDED = "succeeded"
INTENT_CANCELED = "canceled"
INTENT_REQUIRES_PAYMENT_METHOD = "requires_payment_method"

# Reader/issuer codes that mean the attempt is over
FAILURE_CODES = {
    "card_declined",
    "expired_card",
    "incorrect_cvc",
    "incorrect_pin",
    "insufficient_funds",
    "processing_error",
    "lost_card",
    "stolen_card",
    "pin_try_exceeded",
    "payment_intent_payment_attempt_failed",
}

FAILURE_MESSAGE_PATTERN = re.compile(
    r"declin|insufficient|expired|not supported|failed|timed? ?out|cancel",
    re.IGNORECASE,
)


def derive_poll_status(
    provider_status: str | None,
    elapsed_seconds: float,
    failure_code: str | None = None,
    failure_message: str | None = None,
    threshold_seconds: float = 30,
) -> PollStatus:
    """
    Classify a provider intent state for a polling client.

    succeeded -> success, canceled -> failure. An intent back in
    requires_payment_method is a failure when the reader reported a known
    failure code or message, or when it has sat there for threshold_seconds.
    Everything else keeps polling. Never raises.
    """
    try:
        if provider_status == INTENT_SUCCEEDED:
            return PollStatus.TERMINAL_SUCCESS
        if provider_status == INTENT_CANCELED:
            return PollStatus.TERMINAL_FAILURE
        if provider_status != INTENT_REQUIRES_PAYMENT_METHOD:
            return PollStatus.KEEP_POLLING

        if failure_code and failure_code.lower() in FAILURE_CODES:
            return PollStatus.TERMINAL_FAILURE
        if failure_message and FAILURE_MESSAGE_PATTERN.search(failure_message):
            return PollStatus.TERMINAL_FAILURE
        if elapsed_seconds is not None and float(elapsed_seconds) >= float(threshold_seconds):
            return PollStatus.TERMINAL_FAILURE
        return PollStatus.KEEP_POLLING
    except (TypeError, ValueError):
        return PollStatus.KEEP_POLLING

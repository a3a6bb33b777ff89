# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Error kinds raised by the secret cipher, the webhook verifier and the router.

Each error carries the HTTP status the web boundary answers with and a
public message that is safe to return to the caller. Full detail belongs
in the server log only.
"""

from typing import Optional


class DeffatestBotError(Exception):
    """Base exception for Deffatest bot errors."""

    status_code: int = 500
    public_message: str = "Internal error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class FormatError(DeffatestBotError):
    """Encoded secret is not a valid ``iv:tag:ciphertext`` hex triple."""

    status_code = 500
    public_message = "Internal error"


class AuthenticationError(DeffatestBotError):
    """Authentication tag or webhook signature did not match."""

    status_code = 401
    public_message = "Invalid signature"


class MissingCredentialsError(DeffatestBotError):
    """Signature or timestamp header absent from the request."""

    status_code = 401
    public_message = "Missing signature"


class StaleRequestError(DeffatestBotError):
    """Timestamp unparsable or outside the accepted window."""

    status_code = 401
    public_message = "Invalid timestamp"


class PayloadError(DeffatestBotError):
    """Verified webhook body does not match the expected shape."""

    status_code = 400
    public_message = "Invalid payload"


class ServerConfigurationError(DeffatestBotError):
    """Process-wide key or shared secret is missing or invalid."""

    status_code = 500
    public_message = "Server configuration error"

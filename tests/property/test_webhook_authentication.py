# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Property-based tests for webhook authentication.

For any shared secret, body and timestamp inside the freshness window, a
correctly signed request is accepted and any altered one is rejected.
Without a shared secret every request is rejected.
"""

import pytest
from hypothesis import assume, given, settings, strategies as st

from deffatest_bot.errors import (
    AuthenticationError,
    DeffatestBotError,
    ServerConfigurationError,
    StaleRequestError,
)
from deffatest_bot.webhook_verifier import WebhookVerifier, compute_signature


WINDOW_MS = 5 * 60 * 1000
NOW_MS = 1_700_000_000_000

webhook_secrets = st.text(min_size=1, max_size=64)
bodies = st.binary(max_size=1000)
offsets = st.integers(min_value=-WINDOW_MS, max_value=WINDOW_MS)


@settings(max_examples=100)
@given(secret=webhook_secrets, body=bodies, offset=offsets)
def test_signed_fresh_requests_are_accepted(secret, body, offset):
    """
    Property: A request signed with the shared secret and timestamped within
    the window is accepted.
    """
    timestamp = str(NOW_MS + offset)
    signature = compute_signature(secret, timestamp, body)

    WebhookVerifier(secret).verify(signature, timestamp, body, now_ms=NOW_MS)


@settings(max_examples=100)
@given(secret=webhook_secrets, wrong_secret=webhook_secrets, body=bodies, offset=offsets)
def test_requests_signed_with_another_secret_are_rejected(secret, wrong_secret, body, offset):
    """
    Property: A request signed with any other secret is rejected.
    """
    assume(secret != wrong_secret)
    timestamp = str(NOW_MS + offset)
    signature = compute_signature(wrong_secret, timestamp, body)

    with pytest.raises(AuthenticationError):
        WebhookVerifier(secret).verify(signature, timestamp, body, now_ms=NOW_MS)


@settings(max_examples=100)
@given(secret=webhook_secrets, body=bodies, tampered=bodies)
def test_altered_bodies_are_rejected(secret, body, tampered):
    """
    Property: A signature over one body never authenticates a different body.
    """
    assume(body != tampered)
    timestamp = str(NOW_MS)
    signature = compute_signature(secret, timestamp, body)

    with pytest.raises(AuthenticationError):
        WebhookVerifier(secret).verify(signature, timestamp, tampered, now_ms=NOW_MS)


@settings(max_examples=100)
@given(
    secret=webhook_secrets,
    body=bodies,
    age=st.integers(min_value=WINDOW_MS + 1, max_value=10 ** 10),
    direction=st.sampled_from([-1, 1])
)
def test_requests_outside_window_are_stale(secret, body, age, direction):
    """
    Property: A correctly signed request older or newer than the window is
    rejected as stale.
    """
    timestamp = str(NOW_MS + direction * age)
    signature = compute_signature(secret, timestamp, body)

    with pytest.raises(StaleRequestError):
        WebhookVerifier(secret).verify(signature, timestamp, body, now_ms=NOW_MS)


@settings(max_examples=100)
@given(
    signature=st.one_of(st.none(), st.text(max_size=80)),
    timestamp=st.one_of(st.none(), st.text(max_size=20)),
    body=bodies
)
def test_missing_secret_rejects_everything(signature, timestamp, body):
    """
    Property: Without a shared secret, any input raises
    ServerConfigurationError.
    """
    with pytest.raises(ServerConfigurationError):
        WebhookVerifier(None).verify(signature, timestamp, body, now_ms=NOW_MS)


@settings(max_examples=100)
@given(
    secret=webhook_secrets,
    signature=st.one_of(st.none(), st.text(max_size=80)),
    timestamp=st.one_of(st.none(), st.text(max_size=20)),
    body=bodies
)
def test_arbitrary_input_never_raises_unexpected_errors(secret, signature, timestamp, body):
    """
    Property: verify either accepts or raises one of the typed error kinds.
    """
    try:
        WebhookVerifier(secret).verify(signature, timestamp, body, now_ms=NOW_MS)
    except DeffatestBotError:
        pass

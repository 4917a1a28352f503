"""
=============================================================================
MAIL RELAY (SENDGRID)
=============================================================================

Delivers SENDMAIL requests through the SendGrid v3 HTTP API.

=============================================================================
REQUEST
=============================================================================

    POST https://api.sendgrid.com/v3/mail/send
    Authorization: Bearer <SENDGRID_API_KEY>
    Content-Type: application/json

    {
      "personalizations": [{"to": [{"email": "alice@example.com"}]}],
      "from": {"email": "<SENDGRID_FROM>"},
      "subject": "Hello",
      "content": [{"type": "text/plain", "value": "Body text"}]
    }

SendGrid answers 202 Accepted when it has queued the message. Anything
else (or no answer at all) is a failure.

requests is called with timeout=(10, 20): 10s to connect, then 20s for
each wait on response bytes. A server that keeps trickling bytes can hold
the request longer than 20s in total.

=============================================================================
CREDENTIALS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CREDENTIAL LOOKUP (per send)                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Explicit MailCredentials passed to SendGridRelay               │
    │   2. Process environment (SENDGRID_API_KEY, SENDGRID_FROM)          │
    │   3. First readable env file: ../../.env, ../.env, .env             │
    │      (environment values win over file values)                      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The file is parsed, never merged into os.environ here: a Worker must not
change process-wide state another Worker could observe.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import requests

from ..env import DEFAULT_ENV_PATHS, find_env_file, parse_env_file
from .base import CapabilityError, MailRelay


logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
API_KEY_VAR = "SENDGRID_API_KEY"
FROM_VAR = "SENDGRID_FROM"

CONNECT_TIMEOUT = 10.0
# Per socket read, as requests applies it, not a cap on the whole request.
READ_TIMEOUT = 20.0


class MailConfigError(CapabilityError):
    """Credentials are missing or unreadable."""


class MailRelayError(CapabilityError):
    """The HTTP call failed or SendGrid rejected the message."""


@dataclass(frozen=True)
class MailCredentials:
    """SendGrid API key and verified sender. The key never appears in repr()."""

    api_key: str = field(repr=False)
    from_email: str


def resolve_credentials(
    environ: Optional[Mapping[str, str]] = None,
    env_paths: Iterable[str] = DEFAULT_ENV_PATHS,
) -> MailCredentials:
    """
    Look up credentials in the environment, then in the first env file.

    Raises:
        MailConfigError: Neither source provides both values.
    """
    env = os.environ if environ is None else environ
    values: Dict[str, str] = {}

    if not (env.get(API_KEY_VAR) and env.get(FROM_VAR)):
        path = find_env_file(env_paths)
        if path is None:
            raise MailConfigError("cannot find .env file in project root or parent directories")
        try:
            values = parse_env_file(path)
        except OSError as e:
            raise MailConfigError(f"cannot read {path}: {e}") from e
        logger.info(f"Mail credentials loaded from {path}")

    api_key = env.get(API_KEY_VAR) or values.get(API_KEY_VAR)
    from_email = env.get(FROM_VAR) or values.get(FROM_VAR)

    if not api_key or not from_email:
        raise MailConfigError(f"{API_KEY_VAR} or {FROM_VAR} not set")

    return MailCredentials(api_key=api_key, from_email=from_email)


def build_payload(to: str, from_email: str, subject: str, body: str) -> Dict[str, Any]:
    """SendGrid v3 JSON body. requests handles the JSON escaping."""
    return {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }


class SendGridRelay(MailRelay):
    """
    MailRelay backed by the SendGrid HTTP API.

    Usage:
        relay = SendGridRelay()
        if relay.send("alice@example.com", "Hello", "Body text"):
            ...

    Args:
        credentials: Fixed credentials; looked up on every send when None.
        env_paths: Env files searched when the environment lacks credentials.
        endpoint: API URL (overridable for tests and proxies).
        session: requests.Session to reuse; plain requests.post otherwise.
    """

    def __init__(
        self,
        credentials: Optional[MailCredentials] = None,
        env_paths: Iterable[str] = DEFAULT_ENV_PATHS,
        endpoint: str = SENDGRID_URL,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_timeout: float = READ_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.credentials = credentials
        self.env_paths = tuple(env_paths)
        self.endpoint = endpoint
        self.timeout = (connect_timeout, read_timeout)
        self.session = session

    def send(self, to: str, subject: str, body: str) -> bool:
        try:
            self.deliver(to, subject, body)
        except CapabilityError as e:
            logger.error(f"Email to {to or '<empty>'} not sent: {e}")
            return False

        logger.info(f"Email sent to {to}")
        return True

    def deliver(self, to: str, subject: str, body: str) -> None:
        """
        Send one email, raising on failure.

        Raises:
            MailRelayError: Empty recipient, transport error or non-202.
            MailConfigError: Credentials unavailable.
        """
        if not to:
            raise MailRelayError("recipient is empty")

        credentials = self.credentials or resolve_credentials(env_paths=self.env_paths)
        payload = build_payload(to, credentials.from_email, subject, body)
        headers = {
            "Authorization": f"Bearer {credentials.api_key}",
            "Content-Type": "application/json",
        }

        post = self.session.post if self.session is not None else requests.post

        try:
            logger.debug(f"POST {self.endpoint} to={to}")
            response = post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise MailRelayError(f"request to {self.endpoint} timed out") from e
        except requests.exceptions.RequestException as e:
            raise MailRelayError(f"request to {self.endpoint} failed: {e}") from e

        logger.debug(f"SendGrid answered {response.status_code}")
        if response.status_code != 202:
            raise MailRelayError(f"SendGrid API returned error: {response.status_code}")

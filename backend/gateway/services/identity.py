"""
AI Gateway — Identity Provider
===============================

What:  Turns a bearer token into an authenticated caller identity.
How:   Verifies the session JWT issued by the app's identity provider with
       PyJWT (shared HS256 secret, audience check), then derives the caller's
       user class from the e-mail claim.
Who:   Called by GatewayService before anything else touches a store.

User classes:
    exempt    e-mail domain listed in EXEMPT_EMAIL_DOMAINS; bypasses usage
              accounting entirely.
    standard  everyone else.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

import jwt as pyjwt

from gateway.config import settings
from gateway.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

EXEMPT = "exempt"
STANDARD = "standard"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller extracted from a verified token."""

    user_id: uuid.UUID
    email: Optional[str]
    user_class: str

    @property
    def is_exempt(self) -> bool:
        return self.user_class == EXEMPT


def classify_email(email: Optional[str], exempt_domains: List[str]) -> str:
    """Return EXEMPT when the e-mail's domain is in `exempt_domains`."""
    if not email or "@" not in email:
        return STANDARD
    domain = email.rsplit("@", 1)[1].strip().lower()
    return EXEMPT if domain in exempt_domains else STANDARD


class IdentityProvider:
    """
    Verifies session tokens.

    Raises UnauthorizedError for every failure: missing token, bad signature,
    expired token, wrong audience, missing or non-UUID subject.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        audience: Optional[str] = None,
        algorithm: Optional[str] = None,
        exempt_domains: Optional[List[str]] = None,
    ):
        self._secret = secret if secret is not None else settings.jwt_secret
        self._audience = audience if audience is not None else settings.jwt_audience
        self._algorithm = algorithm or settings.jwt_algorithm
        self._exempt_domains = (
            exempt_domains if exempt_domains is not None else settings.exempt_email_domains_list
        )

    async def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise UnauthorizedError("Missing bearer token")
        if not self._secret:
            # Unconfigured verification never admits anyone
            raise UnauthorizedError(context={"reason": "jwt_secret_not_configured"})

        try:
            payload = pyjwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience or None,
                options={"require": ["sub", "exp"]},
            )
        except pyjwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except pyjwt.InvalidTokenError as exc:
            raise UnauthorizedError("Invalid token", context={"reason": str(exc)})

        try:
            user_id = uuid.UUID(str(payload["sub"]))
        except ValueError:
            raise UnauthorizedError("Invalid token subject")

        email = payload.get("email")
        user_class = classify_email(email, self._exempt_domains)
        logger.debug("Authenticated user=%s class=%s", user_id, user_class)
        return Identity(user_id=user_id, email=email, user_class=user_class)


identity_provider = IdentityProvider()

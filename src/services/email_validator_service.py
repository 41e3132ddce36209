"""Email address checks run before an address is stored or mailed to."""

import asyncio
from typing import Iterable, Optional

import structlog
from email_validator import EmailNotValidError, validate_email

logger = structlog.get_logger(__name__)


class EmailValidator:
    """Syntactic and domain-plausibility checks for email addresses.

    Domain checks are policy: a keyword blocklist for disposable or test
    domains, plus an optional DNS deliverability lookup. With an empty
    blocklist and deliverability disabled every well-formed address passes.
    """

    def __init__(
        self,
        blocked_keywords: Optional[Iterable[str]] = None,
        check_deliverability: bool = False,
    ):
        self.blocked_keywords = {k.strip().lower() for k in (blocked_keywords or []) if k.strip()}
        self.check_deliverability = check_deliverability

    @staticmethod
    def normalize(email: str) -> str:
        """Canonical form of an address for storage and lookup.

        Well-formed addresses take the library's normalized spelling (NFC
        local part, Unicode domain even when given as punycode) before being
        lowercased, so every spelling of one mailbox maps to one key.
        Anything unparsable is only trimmed and lowercased.
        """
        candidate = (email or "").strip()
        if not candidate:
            return ""
        try:
            return validate_email(candidate, check_deliverability=False).normalized.lower()
        except EmailNotValidError:
            return candidate.lower()

    def is_valid_format(self, email: str) -> bool:
        """Return True if the address is syntactically valid."""
        if not email or not email.strip() or "@" not in email:
            return False
        try:
            validate_email(email.strip(), check_deliverability=False)
        except EmailNotValidError:
            return False
        return True

    async def has_acceptable_domain(self, email: str) -> bool:
        """Return True if the address's domain is allowed to receive mail.

        Runs the blocklist check first; the DNS lookup, when enabled, runs in
        the default executor so it does not block the event loop.
        """
        domain = self.normalize(email).rpartition("@")[2]
        if not domain:
            return False

        for keyword in self.blocked_keywords:
            if keyword in domain:
                logger.info("email_domain_blocked", domain=domain, keyword=keyword)
                return False

        if not self.check_deliverability:
            return True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: validate_email(email.strip(), check_deliverability=True),
            )
        except EmailNotValidError as e:
            logger.info("email_domain_undeliverable", domain=domain, error=str(e))
            return False
        return True

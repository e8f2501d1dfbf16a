"""
Access rules for the inventory document store and the HTTP surface.

Read access to inventory, user and config data is limited to one email
domain; writes are limited to an admin allow-list (by domain or explicit
email). Anything else is denied.
"""

import logging
from typing import Iterable, Optional

from fastapi import Header, HTTPException

import config

LOGGER = logging.getLogger(__name__)

READABLE_ROOTS = ("inventory", "users", "config")


def _domain_of(email: str) -> str:
    _, _, domain = email.rpartition("@")
    return domain


def _normalize_email(email: Optional[str]) -> str:
    value = (email or "").strip().lower()
    if value.count("@") != 1 or value.startswith("@") or value.endswith("@"):
        return ""
    return value


class AccessPolicy:
    def __init__(
        self,
        read_domain: str = "",
        admin_domains: Iterable[str] = (),
        admin_emails: Iterable[str] = (),
    ):
        self.read_domain = (read_domain or "").strip().lower()
        self.admin_domains = {d.strip().lower() for d in admin_domains if d and d.strip()}
        self.admin_emails = {e.strip().lower() for e in admin_emails if e and e.strip()}

    @classmethod
    def from_config(cls) -> "AccessPolicy":
        return cls(
            read_domain=config.ACCESS_READ_DOMAIN,
            admin_domains=config.ACCESS_ADMIN_DOMAINS,
            admin_emails=config.ACCESS_ADMIN_EMAILS,
        )

    def is_admin(self, email: Optional[str]) -> bool:
        normalized = _normalize_email(email)
        if not normalized:
            return False
        return normalized in self.admin_emails or _domain_of(normalized) in self.admin_domains

    def is_member(self, email: Optional[str]) -> bool:
        normalized = _normalize_email(email)
        if not normalized or not self.read_domain:
            return False
        return _domain_of(normalized) == self.read_domain

    def can_read(self, email: Optional[str], path: str) -> bool:
        root = (path or "").strip("/").split("/", 1)[0]
        if root not in READABLE_ROOTS:
            return False
        return self.is_member(email) or self.is_admin(email)

    def can_write(self, email: Optional[str], path: str) -> bool:
        root = (path or "").strip("/").split("/", 1)[0]
        if root not in READABLE_ROOTS:
            return False
        return self.is_admin(email)


def require_read_access(x_user_email: Optional[str] = Header(default=None)) -> Optional[str]:
    """FastAPI dependency guarding dashboard reads."""
    if not config.ACCESS_POLICY_ENABLED:
        return x_user_email
    if not AccessPolicy.from_config().can_read(x_user_email, "inventory"):
        LOGGER.warning("[AccessPolicy] Read denied for %r", x_user_email)
        raise HTTPException(status_code=403, detail="Read access denied")
    return x_user_email


def require_write_access(x_user_email: Optional[str] = Header(default=None)) -> Optional[str]:
    """FastAPI dependency guarding snapshot runs and store connection checks."""
    if not config.ACCESS_POLICY_ENABLED:
        return x_user_email
    if not AccessPolicy.from_config().can_write(x_user_email, "inventory"):
        LOGGER.warning("[AccessPolicy] Write denied for %r", x_user_email)
        raise HTTPException(status_code=403, detail="Write access denied")
    return x_user_email

"""Identity resolution: map provider claims onto a local user.

Lookup order for an incoming login:
1. user linked to the subject (sub claim)
2. user with the same email
3. user whose username equals the subject

Existing users are updated from the latest claims; unknown subjects get a
new user. All writes go through the UserRepository.
"""

import re
import unicodedata
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from loguru import logger

from oidc_login.auth.claims import resolve_claim, resolve_with_metadata_fallback
from oidc_login.auth.errors import (
    RepositoryError,
    RoleNotMappedError,
    UsernameUnavailableError,
)
from oidc_login.auth.roles import Assign, Deny, RoleMapper
from oidc_login.auth.users import Identity, UserRepository, utc_now
from oidc_login.settings import MappingSettings

PLACEHOLDER_EMAIL_DOMAIN = "oauth.local"

_USERNAME_DISALLOWED = re.compile(r"[^A-Za-z0-9 _.@-]")
_WHITESPACE = re.compile(r"\s+")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_username(value: str) -> str:
    """Fold to ASCII and keep only username-safe characters."""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    cleaned = _USERNAME_DISALLOWED.sub("", folded)
    return _WHITESPACE.sub(" ", cleaned).strip()


def sanitize_email(value: str) -> str:
    """Return a trimmed email address, or "" if it does not look like one."""
    value = value.strip()
    return value if _EMAIL.match(value) else ""


def sanitize_text(value: str) -> str:
    """Strip control characters and collapse whitespace."""
    return _WHITESPACE.sub(" ", _CONTROL.sub("", value)).strip()


class IdentityResolver:
    """Find or create the local identity for a set of claims."""

    def __init__(
        self,
        repository: UserRepository,
        mapping: MappingSettings,
        role_mapper: RoleMapper | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize identity resolver.

        Args:
            repository: User storage
            mapping: Attribute and role mapping settings
            role_mapper: Role mapper (built from ``mapping`` if None)
            clock: Timestamp source for last-login audit fields
        """
        self.repository = repository
        self.mapping = mapping
        self.role_mapper = role_mapper or RoleMapper(mapping)
        self._clock = clock

    def find_or_create(self, claims: Mapping[str, Any]) -> Identity:
        """Resolve claims to a local identity, creating one if needed.

        Args:
            claims: Userinfo claims

        Returns:
            The created or updated identity

        Raises:
            RoleNotMappedError: Role mapping denies this login
            UsernameUnavailableError: No username could be derived
            RepositoryError: Storage failed
        """
        identity = self.find_existing(claims)
        if identity is not None:
            return self._update(identity, claims)
        return self._create(claims)

    def find_existing(self, claims: Mapping[str, Any]) -> Identity | None:
        subject = self._subject(claims)
        email = claims.get("email")

        try:
            identity = self.repository.find_by_subject(subject)
            if identity is None and isinstance(email, str) and email:
                identity = self.repository.find_by_email(email)
            if identity is None and subject:
                identity = self.repository.find_by_username(subject)
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError(f"User lookup failed: {e}") from e

        return identity

    # ------------------------------------------------------------------
    # Existing users
    # ------------------------------------------------------------------

    def _update(self, identity: Identity, claims: Mapping[str, Any]) -> Identity:
        if self.role_mapper.enabled and self.mapping.deny_unmapped_roles:
            # Evaluated as for a new user: revoked claims must lock out
            # existing accounts even when their role is otherwise kept.
            if isinstance(self.role_mapper.determine_role(claims, is_existing_user=False), Deny):
                logger.warning(f"Login denied for existing user {identity.username}: role not mapped")
                raise RoleNotMappedError("Login denied: no matching role found.")

        email = sanitize_email(resolve_claim(claims, self.mapping.attr_email))
        first_name = sanitize_text(resolve_claim(claims, self.mapping.attr_first_name))
        last_name = sanitize_text(resolve_claim(claims, self.mapping.attr_last_name))

        if email:
            identity.email = email
        if first_name:
            identity.first_name = first_name
        if last_name:
            identity.last_name = last_name

        display_name = self.build_display_name(claims, first_name, last_name, identity.username)
        if display_name:
            identity.display_name = display_name

        if self.role_mapper.enabled:
            outcome = self.role_mapper.determine_role(claims, is_existing_user=True)
            if isinstance(outcome, Assign) and outcome.role != identity.role:
                logger.info(f"Role of {identity.username} changed: {identity.role} -> {outcome.role}")
                identity.role = outcome.role

        subject = self._subject(claims)
        if subject:
            identity.subject = subject
        identity.claims = dict(claims)
        identity.last_login = self._clock()
        self.apply_custom_attributes(identity, claims)

        saved = self._save(identity)
        logger.info(f"Updated user {saved.username} from claims")
        return saved

    # ------------------------------------------------------------------
    # New users
    # ------------------------------------------------------------------

    def _create(self, claims: Mapping[str, Any]) -> Identity:
        subject = self._subject(claims)
        email = sanitize_email(resolve_claim(claims, self.mapping.attr_email))
        first_name = sanitize_text(resolve_claim(claims, self.mapping.attr_first_name))
        last_name = sanitize_text(resolve_claim(claims, self.mapping.attr_last_name))

        username = self.determine_username(claims, email, subject)
        if not username:
            raise UsernameUnavailableError("No username could be determined.")
        username = self.make_username_unique(username)

        outcome = self.role_mapper.determine_role(claims, is_existing_user=False)
        if isinstance(outcome, Deny):
            logger.warning(f"Login denied for new user {username}: role not mapped")
            raise RoleNotMappedError("Login denied: no matching role found.")
        role = outcome.role if isinstance(outcome, Assign) else self.mapping.default_role

        now = self._clock()
        identity = Identity(
            username=username,
            email=email or f"{username}@{PLACEHOLDER_EMAIL_DOMAIN}",
            first_name=first_name,
            last_name=last_name,
            display_name=self.build_display_name(claims, first_name, last_name, username),
            role=role,
            subject=subject,
            claims=dict(claims),
            created_at=now,
            last_login=now,
        )
        self.apply_custom_attributes(identity, claims)

        try:
            created = self.repository.add(identity)
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError(f"User could not be created: {e}") from e

        logger.info(f"Created user {created.username} with role {created.role}")
        return created

    def determine_username(self, claims: Mapping[str, Any], email: str, subject: str) -> str:
        """Username from the mapped claim, else email local part, else subject."""
        username = sanitize_username(resolve_claim(claims, self.mapping.attr_username))

        if not username and email:
            username = sanitize_username(email.split("@", 1)[0])

        if not username and subject:
            username = sanitize_username(subject)

        return username

    def make_username_unique(self, username: str) -> str:
        """Append _1, _2, ... until the username is free.

        Example:
            existing {"jdoe", "jdoe_1"}: "jdoe" -> "jdoe_2"
        """
        candidate = username
        counter = 1
        while self.repository.username_exists(candidate):
            candidate = f"{username}_{counter}"
            counter += 1
        return candidate

    def build_display_name(
        self,
        claims: Mapping[str, Any],
        first_name: str,
        last_name: str,
        username: str,
    ) -> str:
        full_name = f"{first_name} {last_name}".strip()

        match self.mapping.display_name_format:
            case "firstname_lastname":
                display_name = full_name
            case "lastname_firstname":
                display_name = f"{last_name} {first_name}".strip()
            case "firstname":
                display_name = first_name
            case "username":
                display_name = username
            case "email":
                display_name = resolve_claim(claims, self.mapping.attr_email)
            case "name_claim":
                name = claims.get("name")
                display_name = sanitize_text(name) if isinstance(name, str) else ""
            case _:
                display_name = full_name

        if not display_name and (first_name or last_name):
            display_name = full_name

        return display_name or username

    def apply_custom_attributes(self, identity: Identity, claims: Mapping[str, Any]) -> None:
        """Copy mapped claims onto identity attributes, skipping empty values."""
        for mapping in self.mapping.custom_attribute_mapping:
            value = resolve_with_metadata_fallback(
                claims, mapping.claim_path, self.mapping.metadata_claim
            )
            if value:
                identity.attributes[mapping.local_field] = sanitize_text(value)

    def _save(self, identity: Identity) -> Identity:
        try:
            return self.repository.save(identity)
        except RepositoryError:
            raise
        except Exception as e:
            raise RepositoryError(f"User could not be updated: {e}") from e

    @staticmethod
    def _subject(claims: Mapping[str, Any]) -> str:
        subject = claims.get("sub")
        return subject if isinstance(subject, str) else ""

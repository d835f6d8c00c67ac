"""Role derivation from claims.

Claim data is untrusted, so matching is deliberately strict: rules are
checked in configured order, the first rule whose claim value is present
among the candidates wins, and values are compared with exact,
case-sensitive equality.

Candidate values for a claim path:
- the resolved string value
- the keys of a mapping value (Zitadel: {"admin": {"<project>": "<org>"}})

List values contribute nothing: ``{"groups": ["admin"]}`` never matches an
``admin`` rule.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from oidc_login.auth.claims import lookup_claim, resolve_claim
from oidc_login.settings import MappingSettings, RoleMappingRule


@dataclass(frozen=True)
class Assign:
    """Assign this role."""

    role: str


@dataclass(frozen=True)
class Deny:
    """Reject the login."""


@dataclass(frozen=True)
class Unchanged:
    """Keep whatever role the user already has."""


RoleOutcome = Assign | Deny | Unchanged


def collect_role_values(claims: Mapping[str, Any], attribute_paths: str) -> list[str]:
    """Collect candidate role values from semicolon-separated claim paths.

    Args:
        claims: Userinfo claims
        attribute_paths: e.g. "roles;urn:zitadel:iam:org:project:roles"

    Returns:
        Candidate values in discovery order
    """
    values: list[str] = []

    for path in (part.strip() for part in attribute_paths.split(";")):
        if not path:
            continue

        resolved = resolve_claim(claims, path)
        if resolved:
            values.append(resolved)

        raw = lookup_claim(claims, path)
        if isinstance(raw, Mapping):
            values.extend(str(key) for key in raw.keys())
        elif isinstance(raw, str) and raw not in values:
            values.append(raw)

    return values


def determine_role(
    claims: Mapping[str, Any],
    rules: Sequence[RoleMappingRule],
    attribute_paths: str,
    default_role: str,
    deny_unmapped: bool,
    is_existing_user: bool,
    keep_existing_roles: bool,
    enabled: bool = True,
) -> RoleOutcome:
    """Derive the role outcome for a login.

    Pure function of its arguments; callers decide what to do with the
    outcome.

    Example:
        >>> rules = [RoleMappingRule(claim_value="admin", role="editor"),
        ...          RoleMappingRule(claim_value="admin", role="subscriber")]
        >>> determine_role({"roles": {"admin": {}}}, rules, "roles", "subscriber",
        ...                False, False, True)
        Assign(role='editor')
    """
    if not enabled:
        return Assign(default_role)

    if is_existing_user and keep_existing_roles:
        return Unchanged()

    unmapped: RoleOutcome = Deny() if deny_unmapped else Assign(default_role)

    candidates = collect_role_values(claims, attribute_paths)
    if not candidates:
        return unmapped

    for rule in rules:
        if rule.claim_value in candidates:
            return Assign(rule.role)

    return unmapped


class RoleMapper:
    """Role derivation bound to the configured mapping settings."""

    def __init__(self, mapping: MappingSettings):
        self.mapping = mapping

    @property
    def enabled(self) -> bool:
        return self.mapping.enable_role_mapping

    def determine_role(self, claims: Mapping[str, Any], is_existing_user: bool) -> RoleOutcome:
        return determine_role(
            claims,
            rules=self.mapping.role_mapping_rules,
            attribute_paths=self.mapping.role_mapping_attribute,
            default_role=self.mapping.default_role,
            deny_unmapped=self.mapping.deny_unmapped_roles,
            is_existing_user=is_existing_user,
            keep_existing_roles=self.mapping.keep_existing_roles,
            enabled=self.mapping.enable_role_mapping,
        )

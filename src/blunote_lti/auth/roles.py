"""
Role normalization from LTI role URIs to the tool's role vocabulary.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, Tuple

from .models import LTIRole

# Substring marker -> role. A URI may contain more than one marker.
ROLE_MARKERS: Tuple[Tuple[str, LTIRole], ...] = (
    ("Learner", LTIRole.LEARNER),
    ("Student", LTIRole.LEARNER),
    ("Instructor", LTIRole.INSTRUCTOR),
    ("Teacher", LTIRole.INSTRUCTOR),
    ("Administrator", LTIRole.ADMINISTRATOR),
    ("ContentDeveloper", LTIRole.CONTENT_DEVELOPER),
)

DEFAULT_ROLES: FrozenSet[LTIRole] = frozenset({LTIRole.LEARNER})


def normalize_roles(role_uris: Iterable[str]) -> FrozenSet[LTIRole]:
    """
    Map LTI role URIs to a non-empty set of `LTIRole`s.

    Unrecognized URIs are ignored; if nothing is recognized the result is
    `{LTIRole.LEARNER}` (least privilege). Never raises.
    """
    roles = set()
    for uri in role_uris or ():
        if not isinstance(uri, str):
            continue
        for marker, role in ROLE_MARKERS:
            if marker in uri:
                roles.add(role)

    return frozenset(roles) if roles else DEFAULT_ROLES

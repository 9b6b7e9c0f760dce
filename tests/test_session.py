from datetime import datetime, timedelta, timezone

import pytest

from blunote_lti.auth.launch import extract_launch_claims
from blunote_lti.auth.models import (
    CLAIM_CONTEXT,
    LTIRole,
    UNKNOWN_COURSE_ID,
    UNKNOWN_COURSE_NAME,
    VerifiedSession,
)
from blunote_lti.auth.session import materialize_session
from blunote_lti.sessions.store import SessionStore

from conftest import ISSUER, DEPLOYMENT_ID, make_claims

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _claims(**overrides):
    return extract_launch_claims(make_claims("n-1", **overrides))


class TestMaterializeSession:

    def test_fields_from_claims(self):
        session = materialize_session(_claims(), frozenset({LTIRole.INSTRUCTOR}), now=NOW)

        assert session.user_id == "u42"
        assert session.user_name == "Ada Lovelace"
        assert session.user_email == "ada@example.edu"
        assert session.course_id == "course9"
        assert session.course_name == "Algorithms"
        assert session.roles == {LTIRole.INSTRUCTOR}
        assert session.platform_issuer == ISSUER
        assert session.deployment_id == DEPLOYMENT_ID
        assert session.resource_link_id == "rl-1"
        assert session.has_course is True

    def test_expiry_is_fixed_window_from_creation(self):
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        assert session.created_at == NOW
        assert session.expires_at - session.created_at == timedelta(hours=24)

    def test_expiry_ignores_assertion_exp(self):
        short = _claims(exp=int(NOW.timestamp()) + 60)
        session = materialize_session(short, frozenset({LTIRole.LEARNER}), now=NOW)
        assert session.expires_at == NOW + timedelta(hours=24)

    def test_display_name_falls_back_to_given_name(self):
        session = materialize_session(
            _claims(name=None, given_name="Ada"), frozenset({LTIRole.LEARNER}), now=NOW
        )
        assert session.user_name == "Ada"

    def test_display_name_placeholder(self):
        session = materialize_session(
            _claims(name=None, email=None), frozenset({LTIRole.LEARNER}), now=NOW
        )
        assert session.user_name == "User"
        assert session.user_email is None

    def test_missing_context_uses_unknown_sentinel(self):
        session = materialize_session(
            _claims(**{CLAIM_CONTEXT: None}), frozenset({LTIRole.LEARNER}), now=NOW
        )
        assert session.course_id == UNKNOWN_COURSE_ID
        assert session.course_name == UNKNOWN_COURSE_NAME
        assert session.has_course is False

    @pytest.mark.parametrize("context", [{"title": "Algorithms"}, {"id": "  ", "title": "Algorithms"}])
    def test_context_without_id_uses_unknown_sentinel(self, context):
        session = materialize_session(
            _claims(**{CLAIM_CONTEXT: context}), frozenset({LTIRole.LEARNER}), now=NOW
        )
        assert session.course_id == UNKNOWN_COURSE_ID
        assert session.course_name == UNKNOWN_COURSE_NAME
        assert session.has_course is False

    def test_course_name_falls_back_to_label(self):
        session = materialize_session(
            _claims(**{CLAIM_CONTEXT: {"id": "c7", "label": "CS101"}}),
            frozenset({LTIRole.LEARNER}),
            now=NOW,
        )
        assert session.course_name == "CS101"

    def test_empty_roles_default_to_learner(self):
        session = materialize_session(_claims(), frozenset(), now=NOW)
        assert session.roles == {LTIRole.LEARNER}

    def test_session_ids_are_unique(self):
        claims = _claims()
        ids = {
            materialize_session(claims, frozenset({LTIRole.LEARNER})).session_id
            for _ in range(200)
        }
        assert len(ids) == 200

    def test_primary_role_prefers_highest_privilege(self):
        session = materialize_session(
            _claims(), frozenset({LTIRole.LEARNER, LTIRole.INSTRUCTOR}), now=NOW
        )
        assert session.primary_role == LTIRole.INSTRUCTOR

    def test_session_is_immutable(self):
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        with pytest.raises(Exception):
            session.user_id = "someone-else"


class TestVerifiedSessionModel:

    def test_rejects_empty_roles(self):
        with pytest.raises(ValueError):
            VerifiedSession(
                session_id="s",
                user_id="u",
                user_name="n",
                course_id="c",
                course_name="C",
                roles=frozenset(),
                platform_issuer=ISSUER,
                deployment_id="d",
                resource_link_id="r",
                created_at=NOW,
                expires_at=NOW + timedelta(hours=1),
            )

    def test_rejects_blank_course_id(self):
        with pytest.raises(ValueError):
            VerifiedSession(
                session_id="s",
                user_id="u",
                user_name="n",
                course_id="",
                course_name="C",
                roles=frozenset({LTIRole.LEARNER}),
                platform_issuer=ISSUER,
                deployment_id="d",
                resource_link_id="r",
                created_at=NOW,
                expires_at=NOW + timedelta(hours=1),
            )


class TestSessionStore:

    def test_put_and_get(self):
        store = SessionStore(clock=lambda: NOW)
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        store.put(session)

        assert store.get(session.session_id) == session
        assert len(store) == 1

    def test_expired_session_is_not_returned(self):
        current = [NOW]
        store = SessionStore(clock=lambda: current[0])
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        store.put(session)

        current[0] = NOW + timedelta(hours=24)
        assert store.get(session.session_id) is None
        assert len(store) == 0

    def test_duplicate_id_rejected(self):
        store = SessionStore(clock=lambda: NOW)
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        store.put(session)
        with pytest.raises(KeyError):
            store.put(session)

    def test_remove(self):
        store = SessionStore(clock=lambda: NOW)
        session = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        store.put(session)

        store.remove(session.session_id)
        store.remove(session.session_id)
        assert store.get(session.session_id) is None

    def test_purge_expired(self):
        current = [NOW]
        store = SessionStore(clock=lambda: current[0])
        old = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=NOW)
        store.put(old)

        current[0] = NOW + timedelta(hours=25)
        fresh = materialize_session(_claims(), frozenset({LTIRole.LEARNER}), now=current[0])
        store.put(fresh)

        assert store.get(old.session_id) is None
        assert store.get(fresh.session_id) == fresh
        assert store.purge_expired() == 0

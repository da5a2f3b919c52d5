"""Unit tests for identity resolution."""

from __future__ import annotations

from viewtrack.tracking.identity import IdentitySource, generate_session_token, resolve_identity


class TestResolveIdentity:
    def test_authenticated_takes_precedence(self):
        identity = resolve_identity("user-1", "anon-1", "sess-1")
        assert identity.value == "user-1"
        assert identity.source is IdentitySource.AUTHENTICATED

    def test_anonymous_when_not_authenticated(self):
        identity = resolve_identity(None, "anon-1", "sess-1")
        assert identity.value == "anon-1"
        assert identity.source is IdentitySource.ANONYMOUS

    def test_session_fallback(self):
        identity = resolve_identity(None, None, "sess-1")
        assert identity.value == "sess-1"
        assert identity.source is IdentitySource.SESSION

    def test_blank_values_are_ignored(self):
        identity = resolve_identity("  ", "", "sess-1")
        assert identity.source is IdentitySource.SESSION

    def test_values_are_stripped(self):
        assert resolve_identity(" user-1 ", None, None).value == "user-1"

    def test_generates_session_token_when_nothing_present(self):
        identity = resolve_identity(None, None, None)
        assert identity.source is IdentitySource.SESSION
        assert len(identity.value) >= 16

    def test_key_is_namespaced_by_source(self):
        anon = resolve_identity(None, "same-id", None)
        user = resolve_identity("same-id", None, None)
        assert anon.key != user.key
        assert anon.key == "anonymous:same-id"


def test_session_tokens_are_random():
    assert generate_session_token() != generate_session_token()

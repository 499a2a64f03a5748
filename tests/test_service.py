"""
Tests for the authorization service: role grants combined with assertions.
"""

import logging
from unittest.mock import MagicMock

import pytest

from conftest import Post
from rbac_authz import (
    AccessDeniedError,
    AuthorizationService,
    CyclicRoleGraphError,
    Identity,
    InMemoryRoleProvider,
    OwnershipAssertion,
    ResolutionStrategy,
    Role,
    StaticIdentityProvider,
    UnknownRoleError,
)
from rbac_authz.rbac import AssertionRegistry


class TestRoleDecisions:
    """Decisions made by the role graph alone"""

    def test_direct_permission(self, service):
        editor = Identity(id="erin", roles=["editor"])
        assert service.is_granted(editor, "posts.delete")

    def test_inheritance_chain(self):
        provider = InMemoryRoleProvider(
            [
                Role("r1", parents=("r2",)),
                Role("r2", parents=("r3",)),
                Role("r3", frozenset({"p"})),
            ]
        )
        service = AuthorizationService(provider)
        assert service.is_granted(Identity(id="u", roles=["r1"]), "p")

    def test_guest_and_admin(self, service):
        guest = Identity(id="visitor", roles=["guest"])
        admin = Identity(id="root", roles=["admin"])
        assert not service.is_granted(guest, "users.manage")
        assert service.is_granted(admin, "users.manage")

    def test_admin_inherits_editor(self, service):
        admin = Identity(id="root", roles=["admin"])
        assert service.is_granted(admin, "posts.publish")

    def test_parent_does_not_inherit_child(self, service):
        editor = Identity(id="erin", roles=["editor"])
        assert not service.is_granted(editor, "users.manage")

    def test_no_roles_denied(self, service):
        result = service.check(Identity(id="nobody"), "posts.read")
        assert not result.allowed
        assert result.reason == "No role assigned"

    def test_unknown_permission_denied(self, service):
        admin = Identity(id="root", roles=["admin"])
        assert not service.is_granted(admin, "reports.export")

    def test_cycle_raises(self):
        provider = InMemoryRoleProvider(
            [Role("r1", parents=("r2",)), Role("r2", parents=("r1",))], validate=False
        )
        service = AuthorizationService(provider)
        with pytest.raises(CyclicRoleGraphError):
            service.is_granted(Identity(id="u", roles=["r1"]), "p")

    def test_cycle_raises_when_role_holds_permission(self):
        provider = InMemoryRoleProvider(
            [Role("r1", frozenset({"p"}), parents=("r2",)), Role("r2", parents=("r1",))],
            validate=False,
        )
        service = AuthorizationService(provider)
        with pytest.raises(CyclicRoleGraphError):
            service.is_granted(Identity(id="u", roles=["r1"]), "p")

    def test_deep_inheritance_chain(self):
        roles = [Role(f"r{i}", parents=(f"r{i + 1}",)) for i in range(1500)]
        roles.append(Role("r1500", frozenset({"p"})))
        service = AuthorizationService(InMemoryRoleProvider(roles))
        assert service.is_granted(Identity(id="u", roles=["r0"]), "p")

    def test_unknown_role_raises(self, service):
        with pytest.raises(UnknownRoleError):
            service.is_granted(Identity(id="u", roles=["superuser"]), "p")

    def test_invalid_permission(self, service):
        with pytest.raises(ValueError):
            service.is_granted(Identity(id="u", roles=["guest"]), "")
        with pytest.raises(ValueError):
            service.is_granted(Identity(id="u", roles=["guest"]), "p" * 129)

    def test_lazy_strategy(self, provider):
        service = AuthorizationService(provider, strategy=ResolutionStrategy.LAZY)
        assert service.is_granted(Identity(id="root", roles=["admin"]), "posts.delete")
        assert not service.is_granted(Identity(id="v", roles=["guest"]), "posts.delete")


class TestGuestAndIdentityProvider:
    """Decisions without an explicit identity"""

    def test_no_identity_uses_guest_role(self, service):
        assert service.is_granted(None, "posts.read")
        assert not service.is_granted(None, "posts.delete")

    def test_no_guest_role_defined(self):
        service = AuthorizationService(InMemoryRoleProvider([Role("admin")]))
        result = service.check(None, "posts.read")
        assert not result.allowed
        assert result.assigned_roles == []

    def test_guest_role_disabled(self, provider):
        service = AuthorizationService(provider, guest_role=None)
        assert not service.is_granted(None, "posts.read")

    def test_identity_without_roles_is_not_a_guest(self, service):
        assert not service.is_granted(Identity(id="nobody"), "posts.read")

    def test_identity_provider_fallback(self, provider):
        admin = Identity(id="root", roles=["admin"])
        service = AuthorizationService(
            provider, identity_provider=StaticIdentityProvider(admin)
        )
        result = service.check(None, "users.manage")
        assert result.allowed
        assert result.identity_id == "root"


class TestAssertionDecisions:
    """Decisions restricted by assertions"""

    def test_must_be_author(self, provider, registry, alice, bob):
        registry.register("posts.delete", OwnershipAssertion("author"))
        service = AuthorizationService(provider, registry)
        post = Post(id="1", author=alice)
        assert service.is_granted(alice, "posts.delete", post)
        assert not service.is_granted(bob, "posts.delete", post)

    def test_assertion_can_only_restrict(self, provider, registry, alice):
        predicate = MagicMock(return_value=True)
        registry.register("users.manage", predicate)
        service = AuthorizationService(provider, registry)
        assert not service.is_granted(alice, "users.manage")
        predicate.assert_not_called()

    def test_role_scoped_assertion(self, provider, registry, alice):
        registry.register("posts.delete", OwnershipAssertion("author"))
        registry.register(("editor", "posts.delete"), lambda identity, post: True)
        service = AuthorizationService(provider, registry)
        post = Post(id="2", author="bob")
        editor = Identity(id="erin", roles=["editor"])
        assert service.is_granted(editor, "posts.delete", post)
        assert not service.is_granted(alice, "posts.delete", post)

    def test_role_scoped_assertion_applies_to_inheriting_roles(self, provider, registry):
        registry.register("posts.delete", OwnershipAssertion("author"))
        registry.register(("editor", "posts.delete"), lambda identity, post: True)
        service = AuthorizationService(provider, registry)
        admin = Identity(id="root", roles=["admin"])
        result = service.check(admin, "posts.delete", Post(id="2", author="bob"))
        assert result.allowed
        assert result.assertion == "editor/posts.delete"

    def test_any_granting_role_is_sufficient(self, provider, registry):
        registry.register(("author", "posts.delete"), OwnershipAssertion("author"))
        service = AuthorizationService(provider, registry)
        both = Identity(id="erin", roles=["author", "editor"])
        result = service.check(both, "posts.delete", Post(id="2", author="bob"))
        assert result.allowed
        assert result.granting_roles == ["author", "editor"]
        assert result.reason == "Granted by role 'editor'"

    def test_shared_assertion_evaluated_once(self, provider, registry):
        predicate = MagicMock(return_value=False)
        registry.register("posts.delete", predicate)
        service = AuthorizationService(provider, registry)
        both = Identity(id="erin", roles=["author", "editor"])
        result = service.check(both, "posts.delete", "ctx")
        assert not result.allowed
        assert result.reason == "Denied by assertion(s): posts.delete"
        predicate.assert_called_once_with(both, "ctx")

    def test_context_passed_untouched(self, provider, registry, alice):
        seen = []
        registry.register("posts.delete", lambda identity, ctx: seen.append(ctx) or True)
        service = AuthorizationService(provider, registry)
        context = object()
        service.is_granted(alice, "posts.delete", context)
        assert seen == [context]

    def test_failing_assertion_denies(self, provider, registry, alice, caplog):
        def broken(identity, post):
            return post.author == identity.id

        registry.register("posts.delete", broken)
        service = AuthorizationService(provider, registry)

        with caplog.at_level(logging.ERROR, logger="rbac_authz.rbac.service"):
            result = service.check(alice, "posts.delete", None)

        assert not result.allowed
        assert result.error is not None
        assert "failed, denying access" in caplog.text
        assert service.get_stats()["assertion_failures"] == 1

    def test_idempotent(self, provider, registry, alice):
        registry.register("posts.delete", OwnershipAssertion("author"))
        service = AuthorizationService(provider, registry)
        post = Post(id="1", author="alice")
        results = {service.is_granted(alice, "posts.delete", post) for _ in range(5)}
        assert results == {True}


class TestServiceApi:
    """Test require, batch checks and statistics"""

    def test_require(self, service):
        admin = Identity(id="root", roles=["admin"])
        assert service.require(admin, "users.manage").allowed
        with pytest.raises(AccessDeniedError) as exc_info:
            service.require(Identity(id="v", roles=["guest"]), "users.manage")
        assert exc_info.value.permission == "users.manage"

    def test_all_and_any(self, service):
        editor = Identity(id="erin", roles=["editor"])
        assert service.is_granted_all(editor, ["posts.delete", "posts.publish"])
        assert not service.is_granted_all(editor, ["posts.delete", "users.manage"])
        assert service.is_granted_any(editor, ["users.manage", "posts.publish"])
        assert not service.is_granted_any(editor, ["users.manage"])

    def test_check_result(self, service):
        result = service.check(Identity(id="root", roles=["admin"]), "posts.delete")
        assert result.allowed
        assert result.granting_roles == ["admin"]
        assert result.assigned_roles == ["admin"]
        assert result.evaluated_at is not None

    def test_stats(self, service):
        service.is_granted(Identity(id="root", roles=["admin"]), "users.manage")
        service.is_granted(Identity(id="v", roles=["guest"]), "users.manage")
        stats = service.get_stats()
        assert stats["checks"] == 2
        assert stats["grants"] == 1
        assert stats["denials"] == 1
        assert stats["roles_count"] == 5
        assert stats["resolver"]["strategy"] == "eager"

        service.reset_stats()
        assert service.get_stats()["checks"] == 0

    def test_concurrent_decisions_during_reload(self, provider):
        """Decisions see either the old or the new role graph"""
        import threading

        service = AuthorizationService(provider)
        provider.freeze()
        admin = Identity(id="root", roles=["admin"])
        errors = []

        def decide():
            try:
                for _ in range(200):
                    service.is_granted(admin, "posts.delete")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=decide) for _ in range(4)]
        for thread in threads:
            thread.start()
        for _ in range(20):
            provider.reload(
                [
                    Role("guest", frozenset({"posts.read"})),
                    Role("editor", frozenset({"posts.delete"})),
                    Role("admin", parents=("editor",)),
                ]
            )
        for thread in threads:
            thread.join()

        assert errors == []

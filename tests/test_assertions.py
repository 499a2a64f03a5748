"""
Tests for the assertion registry and built-in assertions.
"""

import pytest

from conftest import Post
from rbac_authz import (
    AssertionEvaluationError,
    ConfigurationError,
    DuplicateAssertionError,
    Identity,
)
from rbac_authz.rbac import AssertionKey, AssertionRegistry, AssertionSet, OwnershipAssertion


def always(identity, context):
    return True


def never(identity, context):
    return False


class TestAssertionKey:
    """Test key normalisation"""

    def test_of(self):
        assert AssertionKey.of("posts.delete") == AssertionKey("posts.delete")
        assert AssertionKey.of(("editor", "posts.delete")) == AssertionKey(
            "posts.delete", role="editor"
        )
        key = AssertionKey("posts.delete")
        assert AssertionKey.of(key) is key

    def test_invalid_keys(self):
        with pytest.raises(TypeError):
            AssertionKey.of(42)
        with pytest.raises(ValueError):
            AssertionKey.of("")

    def test_str(self):
        assert str(AssertionKey("posts.delete", role="editor")) == "editor/posts.delete"
        assert str(AssertionKey("posts.delete")) == "posts.delete"


class TestAssertionRegistry:
    """Test registration and resolution"""

    def setup_method(self):
        self.registry = AssertionRegistry()

    def test_duplicate_registration(self):
        self.registry.register("posts.delete", always)
        with pytest.raises(DuplicateAssertionError) as exc_info:
            self.registry.register("posts.delete", never)
        assert exc_info.value.key == AssertionKey("posts.delete")

    def test_duplicate_role_scoped_registration(self):
        self.registry.register(("editor", "posts.delete"), always)
        with pytest.raises(DuplicateAssertionError):
            self.registry.register(AssertionKey("posts.delete", role="editor"), never)

    def test_same_permission_different_scopes(self):
        self.registry.register("posts.delete", never)
        assert not self.registry.has_role_scoped
        self.registry.register(("editor", "posts.delete"), always)
        assert len(self.registry) == 2
        assert self.registry.has_role_scoped

    def test_not_callable(self):
        with pytest.raises(TypeError):
            self.registry.register("posts.delete", "must_be_author")

    def test_frozen(self):
        self.registry.freeze()
        with pytest.raises(RuntimeError):
            self.registry.register("posts.delete", always)

    def test_role_scoped_key_takes_precedence(self):
        self.registry.register("posts.delete", never)
        self.registry.register(("editor", "posts.delete"), always)
        assert self.registry.resolve("posts.delete", "editor") is always
        assert self.registry.resolve("posts.delete", "author") is never
        assert self.registry.resolve("posts.delete") is never

    def test_inherited_role_scoped_key(self):
        self.registry.register("posts.delete", never)
        self.registry.register(("editor", "posts.delete"), always)
        key, predicate = self.registry.resolve_entry(
            "posts.delete", "admin", inherited_roles=["editor"]
        )
        assert key == AssertionKey("posts.delete", role="editor")
        assert predicate is always

    def test_own_scoped_key_before_inherited(self):
        self.registry.register(("editor", "posts.delete"), always)
        self.registry.register(("admin", "posts.delete"), never)
        key, _ = self.registry.resolve_entry("posts.delete", "admin", ["editor"])
        assert key.role == "admin"

    def test_exact_permission_match_only(self):
        self.registry.register("posts.delete", never)
        assert self.registry.resolve("posts.deleteAll") is None
        assert self.registry.resolve("posts") is None

    def test_contains(self):
        self.registry.register(("editor", "posts.delete"), always)
        assert ("editor", "posts.delete") in self.registry
        assert "posts.delete" not in self.registry
        assert 42 not in self.registry

    def test_evaluate_coerces_to_bool(self):
        assert self.registry.evaluate(lambda identity, ctx: 1, None) is True
        assert self.registry.evaluate(lambda identity, ctx: None, None) is False

    def test_evaluate_wraps_errors(self):
        def broken(identity, context):
            raise KeyError("author")

        with pytest.raises(AssertionEvaluationError) as exc_info:
            self.registry.evaluate(broken, None, None, key="posts.delete")
        assert isinstance(exc_info.value.original, KeyError)
        assert exc_info.value.key == "posts.delete"

    def test_from_config(self):
        registry = AssertionRegistry.from_config(
            {"posts.delete": "never"},
            {"never": lambda: never, "always": lambda: always},
            role_assertion_map={"editor": {"posts.delete": "always"}},
        )
        assert registry.resolve("posts.delete") is never
        assert registry.resolve("posts.delete", "editor") is always

    def test_from_config_unknown_factory(self):
        with pytest.raises(ConfigurationError):
            AssertionRegistry.from_config({"posts.delete": "missing"}, {})

    def test_from_config_malformed_role_entry(self):
        with pytest.raises(ConfigurationError):
            AssertionRegistry.from_config(
                {}, {"always": lambda: always}, role_assertion_map={"editor": "always"}
            )


class TestOwnershipAssertion:
    """Test the ownership assertion"""

    def setup_method(self):
        self.alice = Identity(id="alice", roles=["author"])
        self.must_be_author = OwnershipAssertion("author")

    def test_attribute_owner(self):
        assert self.must_be_author(self.alice, Post(id="1", author="alice"))
        assert not self.must_be_author(self.alice, Post(id="2", author="bob"))

    def test_identity_owner(self):
        post = Post(id="1", author=Identity(id="alice"))
        assert self.must_be_author(self.alice, post)

    def test_mapping_owner(self):
        assert self.must_be_author(self.alice, {"author": "alice"})
        assert not self.must_be_author(self.alice, {"title": "no author"})

    def test_accessor_owner(self):
        class Article:
            def get_author(self):
                return "alice"

        assert self.must_be_author(self.alice, Article())

    def test_missing_context_denies(self):
        assert not self.must_be_author(self.alice, None)
        assert not self.must_be_author(None, Post(id="1", author="alice"))

    def test_plain_identity_values(self):
        assert OwnershipAssertion()("alice", {"owner": "alice"})
        assert not OwnershipAssertion()("bob", {"owner": "alice"})


class TestAssertionSet:
    """Test combined assertions"""

    def test_and(self):
        assert AssertionSet([always, always])(None, None)
        assert not AssertionSet([always, never])(None, None)

    def test_or(self):
        assert AssertionSet([never, always], condition="or")(None, None)
        assert not AssertionSet([never, never], condition="OR")(None, None)

    def test_invalid(self):
        with pytest.raises(ValueError):
            AssertionSet([])
        with pytest.raises(ValueError):
            AssertionSet([always], condition="XOR")
        with pytest.raises(TypeError):
            AssertionSet([always, "never"])

import os
import sys
from dataclasses import dataclass
from typing import Any

import pytest

# Ensure project root is on sys.path so tests can import the package and examples
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from rbac_authz import (  # noqa: E402
    AssertionRegistry,
    AuthorizationService,
    Identity,
    InMemoryRoleProvider,
    Role,
)


@dataclass
class Post:
    """Minimal blog post used as assertion context"""

    id: str
    author: Any


@pytest.fixture
def blog_roles():
    """guest <- member <- author; editor <- admin"""
    return [
        Role("guest", frozenset({"posts.read"})),
        Role("member", frozenset({"comments.create"}), parents=("guest",)),
        Role("author", frozenset({"posts.create", "posts.delete"}), parents=("member",)),
        Role("editor", frozenset({"posts.delete", "posts.publish"})),
        Role("admin", frozenset({"users.manage"}), parents=("editor",)),
    ]


@pytest.fixture
def provider(blog_roles):
    return InMemoryRoleProvider(blog_roles)


@pytest.fixture
def registry():
    return AssertionRegistry()


@pytest.fixture
def service(provider, registry):
    return AuthorizationService(provider, registry)


@pytest.fixture
def alice():
    return Identity(id="alice", roles=["author"])


@pytest.fixture
def bob():
    return Identity(id="bob", roles=["author"])

"""
Blog Authorization Demo - rbac-authz with FastAPI

This example shows the two authorization layers working together:

1. A route guard rejects obviously unauthorized requests (``/admin/*``)
2. The authorization service decides fine-grained, context-aware access
   (an author may delete only their own posts; editors may delete any post)

## Roles (examples/roles.json)

- **guest**: posts.read
- **member** (inherits guest): comments.create, profile.edit
- **author** (inherits member): posts.create, posts.edit, posts.delete
- **moderator** (inherits member): comments.moderate
- **editor** (inherits author, moderator): posts.publish
- **admin** (inherits editor): users.manage

## Assertions

- ``posts.delete`` / ``posts.edit``: must be the author of the post
- ``editor/posts.delete``: editors may delete any post

## Usage

```bash
uvicorn examples.blog_demo:app --reload

curl -H "X-User: alice" -H "X-Roles: author" -X DELETE localhost:8000/posts/1
```

Identity comes from the ``X-User``/``X-Roles`` headers purely for the demo;
a real application sets ``request.state.identity`` from its authentication
middleware.
"""

import logging
from pathlib import Path
from typing import Dict

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from rbac_authz import Identity, Settings, create_authorization_service, setup_authorization
from rbac_authz.rbac import GuardDependency, RBACPermission, RouteGuard

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ROLES_FILE = Path(__file__).with_name("roles.json")

# ================== CONFIGURATION ==================

settings = Settings(
    roles_file=str(ROLES_FILE),
    freeze_roles=True,
    assertion_map={
        "posts.delete": "must_be_author",
        "posts.edit": "must_be_author",
    },
    role_assertion_map={"editor": {"posts.delete": "any_post"}},
)

service = create_authorization_service(
    settings,
    assertion_factories={"any_post": lambda: (lambda identity, post: True)},
)

# the guard denies routes no rule matches
guard = RouteGuard(
    {"/admin/*": ["admin"], "/": ["*"], "/posts*": ["*"]},
    service.role_provider,
)

# ================== DATA ==================


class BlogPost(BaseModel):
    """Blog post data model."""

    id: str
    title: str
    author: str


POSTS: Dict[str, BlogPost] = {
    "1": BlogPost(id="1", title="Hello", author="alice"),
    "2": BlogPost(id="2", title="Second post", author="bob"),
}


class HeaderIdentityMiddleware(BaseHTTPMiddleware):
    """Demo-only identity source: trusts X-User / X-Roles headers."""

    async def dispatch(self, request: Request, call_next):
        user = request.headers.get("X-User")
        if user:
            roles = [r.strip() for r in request.headers.get("X-Roles", "").split(",") if r.strip()]
            request.state.identity = Identity(id=user, roles=roles)
        return await call_next(request)


def load_post(request: Request) -> BlogPost:
    post = POSTS.get(request.path_params["post_id"])
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


# ================== APP ==================

app = FastAPI(title="Blog Authorization Demo", dependencies=[GuardDependency(guard)])
app.add_middleware(HeaderIdentityMiddleware)
setup_authorization(app, service)


@app.get("/")
async def root():
    return {"message": "Blog Authorization Demo"}


@app.get("/posts", dependencies=[RBACPermission("posts.read", allow_guest=True)])
async def list_posts():
    return {"posts": [post.model_dump() for post in POSTS.values()]}


@app.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    _: None = RBACPermission("posts.delete", context_getter=load_post),
):
    POSTS.pop(post_id, None)
    logger.info(f"Deleted post {post_id}")
    return {"deleted": post_id}


@app.get("/admin/stats")
async def admin_stats():
    return service.get_stats()

"""
Integration tests running the blog example application end to end.
"""

import pytest
from fastapi.testclient import TestClient

from examples.blog_demo import POSTS, BlogPost, app, service

ORIGINAL_POSTS = dict(POSTS)


def as_user(user, *roles):
    return {"X-User": user, "X-Roles": ",".join(roles)}


@pytest.fixture(autouse=True)
def restore_posts():
    yield
    POSTS.clear()
    POSTS.update(ORIGINAL_POSTS)


class TestBlogDemo:
    """Test the blog example end to end"""

    def setup_method(self):
        self.client = TestClient(app)

    def test_anonymous_can_read(self):
        response = self.client.get("/posts")
        assert response.status_code == 200
        assert len(response.json()["posts"]) == 2

    def test_author_deletes_own_post(self):
        response = self.client.delete("/posts/1", headers=as_user("alice", "author"))
        assert response.status_code == 200
        assert "1" not in POSTS

    def test_author_cannot_delete_others_post(self):
        response = self.client.delete("/posts/2", headers=as_user("alice", "author"))
        assert response.status_code == 403
        assert "2" in POSTS

    def test_editor_deletes_any_post(self):
        response = self.client.delete("/posts/2", headers=as_user("carol", "editor"))
        assert response.status_code == 200

    def test_admin_inherits_editor_assertion(self):
        response = self.client.delete("/posts/1", headers=as_user("dave", "admin"))
        assert response.status_code == 200

    def test_member_cannot_delete(self):
        response = self.client.delete("/posts/1", headers=as_user("erin", "member"))
        assert response.status_code == 403

    def test_anonymous_cannot_delete(self):
        assert self.client.delete("/posts/1").status_code == 401

    def test_missing_post(self):
        response = self.client.delete("/posts/99", headers=as_user("alice", "author"))
        assert response.status_code == 404

    def test_admin_area(self):
        assert self.client.get("/admin/stats").status_code == 401
        assert self.client.get("/admin/stats", headers=as_user("alice", "author")).status_code == 403

        response = self.client.get("/admin/stats", headers=as_user("dave", "admin"))
        assert response.status_code == 200
        assert response.json()["roles_count"] == 6

    def test_frozen_roles_share_decisions(self):
        self.client.get("/posts")
        self.client.get("/posts")
        assert service.get_stats()["resolver"]["cache_hits"] >= 1

    def test_post_model(self):
        assert POSTS["1"] == BlogPost(id="1", title="Hello", author="alice")

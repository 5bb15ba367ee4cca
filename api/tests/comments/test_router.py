"""HTTP tests for the comment and moderation routes."""

from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.auth.security import create_access_token
from src.comments.models import CommentStatus


def auth_headers(user_id: UUID, role: str = "user", name: str = "Reader") -> dict[str, str]:
    token = create_access_token({"sub": str(user_id), "role": role, "name": name})
    return {"Authorization": f"Bearer {token}"}


def create(
    client: TestClient,
    user_id: UUID,
    story_id: UUID,
    content: str = "What a chapter",
    parent_id: UUID | None = None,
) -> dict:
    body = {"content": content, "target": {"story_id": str(story_id), "type": "story"}}
    if parent_id is not None:
        body["hierarchy"] = {"parent_id": str(parent_id)}
    response = client.post("/v1/comments", json=body, headers=auth_headers(user_id))
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestCreateRoute:
    """Tests for POST /v1/comments."""

    def test_create_returns_envelope(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        response = client.post(
            "/v1/comments",
            json={"content": "What a chapter", "target": {"story_id": str(story_id)}},
            headers=auth_headers(reader_id, name="Bao"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Comment posted"
        assert body["data"]["author"] == {"id": str(reader_id), "name": "Bao", "avatar": None}
        assert body["data"]["level"] == 0
        assert body["data"]["converted"] is False
        assert body["data"]["can_edit"] is True

    def test_deep_reply_is_converted(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        root = create(client, author_id, story_id, "Root comment")
        first = create(client, reader_id, story_id, "First reply", root["id"])
        second = create(client, author_id, story_id, "Second reply", first["id"])

        response = client.post(
            "/v1/comments",
            json={
                "content": "Third reply",
                "target": {"story_id": str(story_id)},
                "hierarchy": {"parent_id": second["id"]},
            },
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Reply posted as a quoted reply"
        assert body["data"]["level"] == 2
        assert body["data"]["parent_id"] == first["id"]
        assert body["data"]["quote"]["quoted_comment_id"] == second["id"]

    def test_requires_token(self, client: TestClient, story_id: UUID) -> None:
        response = client.post(
            "/v1/comments",
            json={"content": "What a chapter", "target": {"story_id": str(story_id)}},
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Access token not provided"
        assert response.json()["success"] is False

    def test_validation_error_body(
        self, client: TestClient, reader_id: UUID
    ) -> None:
        response = client.post(
            "/v1/comments",
            json={"content": "What a chapter", "target": {"story_id": "not-a-uuid"}},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation error"
        assert body["data"][0]["field"] == "body.target.story_id"
        assert "request_id" in body

    def test_content_too_long(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        response = client.post(
            "/v1/comments",
            json={"content": "a" * 2001, "target": {"story_id": str(story_id)}},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 400

    def test_chapter_target_without_chapter(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        response = client.post(
            "/v1/comments",
            json={
                "content": "What a chapter",
                "target": {"story_id": str(story_id), "type": "chapter"},
            },
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 400

    def test_missing_parent(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        response = client.post(
            "/v1/comments",
            json={
                "content": "What a chapter",
                "target": {"story_id": str(story_id)},
                "hierarchy": {"parent_id": str(uuid4())},
            },
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 404

    def test_creation_rate_limit(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        for i in range(5):
            create(client, reader_id, story_id, f"Comment number {i}")

        response = client.post(
            "/v1/comments",
            json={"content": "One more", "target": {"story_id": str(story_id)}},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_admin_is_not_rate_limited(
        self, client: TestClient, admin_id: UUID, story_id: UUID
    ) -> None:
        headers = auth_headers(admin_id, role="admin")
        for i in range(7):
            response = client.post(
                "/v1/comments",
                json={"content": f"Notice {i}", "target": {"story_id": str(story_id)}},
                headers=headers,
            )
            assert response.status_code == 201

    def test_duplicate_content_blocked(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        create(client, reader_id, story_id, "Same words")

        response = client.post(
            "/v1/comments",
            json={"content": "Same words", "target": {"story_id": str(story_id)}},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("You just posted this comment")

    def test_reworded_content_allowed(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        create(client, reader_id, story_id, "Same words")

        response = client.post(
            "/v1/comments",
            json={"content": "Same   words", "target": {"story_id": str(story_id)}},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 201


class TestReadRoutes:
    """Tests for the public read routes."""

    def test_list_with_pagination(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        for i in range(3):
            create(client, author_id, story_id, f"Comment number {i}")

        response = client.get(
            "/v1/comments", params={"story_id": str(story_id), "limit": 2}
        )

        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]) == 2
        assert body["pagination"]["has_more"] is True
        assert body["pagination"]["limit"] == 2
        assert body["pagination"]["next_cursor"]

        following = client.get(
            "/v1/comments",
            params={
                "story_id": str(story_id),
                "limit": 2,
                "cursor": body["pagination"]["next_cursor"],
            },
        ).json()
        assert len(following["data"]) == 1
        assert following["pagination"]["has_more"] is False

    def test_bad_cursor(self, client: TestClient, story_id: UUID) -> None:
        response = client.get(
            "/v1/comments", params={"story_id": str(story_id), "cursor": "%%%"}
        )

        assert response.status_code == 400

    def test_unknown_sort(self, client: TestClient, story_id: UUID) -> None:
        response = client.get(
            "/v1/comments", params={"story_id": str(story_id), "sort": "random"}
        )

        assert response.status_code == 400

    def test_get_missing_comment(self, client: TestClient) -> None:
        response = client.get(f"/v1/comments/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_get_comment_as_admin_includes_moderation(
        self, client: TestClient, reader_id: UUID, admin_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)

        public = client.get(f"/v1/comments/{comment['id']}").json()["data"]
        admin = client.get(
            f"/v1/comments/{comment['id']}",
            headers=auth_headers(admin_id, role="admin"),
        ).json()["data"]

        assert "flag_count" not in public
        assert admin["flag_count"] == 0
        assert admin["can_delete"] is True

    def test_thread(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        root = create(client, author_id, story_id, "Root comment")
        reply = create(client, reader_id, story_id, "A reply", root["id"])

        response = client.get(f"/v1/comments/thread/{reply['id']}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == root["id"]
        assert [r["id"] for r in data["replies"]] == [reply["id"]]
        assert data["reply_count"] == 1

    def test_stats(self, client: TestClient, reader_id: UUID, story_id: UUID) -> None:
        create(client, reader_id, story_id)

        response = client.get(
            "/v1/comments/stats", params={"story_id": str(story_id), "range": "30d"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1


class TestWriteRoutes:
    """Tests for edit, delete, reactions and reports."""

    def test_update(self, client: TestClient, reader_id: UUID, story_id: UUID) -> None:
        comment = create(client, reader_id, story_id)

        response = client.put(
            f"/v1/comments/{comment['id']}",
            json={"content": "Edited words"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Comment updated"
        assert response.json()["data"]["content"] == "Edited words"
        assert response.json()["data"]["is_edited"] is True

    def test_update_by_other_user(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.put(
            f"/v1/comments/{comment['id']}",
            json={"content": "Edited words"},
            headers=auth_headers(author_id),
        )

        assert response.status_code == 403

    def test_delete(self, client: TestClient, reader_id: UUID, story_id: UUID) -> None:
        comment = create(client, reader_id, story_id)

        response = client.request(
            "DELETE",
            f"/v1/comments/{comment['id']}",
            json={"reason": "typo"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Comment deleted"
        assert body["data"]["status"] == "deleted"
        assert body["data"]["failed_side_effects"] == []

    def test_delete_twice_conflicts(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)
        client.delete(f"/v1/comments/{comment['id']}", headers=auth_headers(reader_id))

        response = client.delete(
            f"/v1/comments/{comment['id']}", headers=auth_headers(reader_id)
        )

        assert response.status_code == 409

    def test_react(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, author_id, story_id)

        response = client.post(
            f"/v1/comments/{comment['id']}/react",
            json={"action": "like"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["likes"] == 1
        assert data["dislikes"] == 0
        assert data["user_reaction"] == "like"

    def test_react_invalid_action(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, author_id, story_id)

        response = client.post(
            f"/v1/comments/{comment['id']}/react",
            json={"action": "love"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 400

    def test_flag(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, author_id, story_id)

        response = client.post(
            f"/v1/comments/{comment['id']}/flag",
            json={"reason": "off-topic", "description": "  not about the story "},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 201
        assert response.json()["message"] == "Report received"
        assert response.json()["data"] == {"id": comment["id"], "flag_count": 1}

    def test_self_flag_forbidden(
        self, client: TestClient, reader_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.post(
            f"/v1/comments/{comment['id']}/flag",
            json={"reason": "spam"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 403

    def test_double_flag_conflicts(
        self, client: TestClient, reader_id: UUID, author_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, author_id, story_id)
        url = f"/v1/comments/{comment['id']}/flag"
        client.post(url, json={"reason": "spam"}, headers=auth_headers(reader_id))

        response = client.post(url, json={"reason": "spam"}, headers=auth_headers(reader_id))

        assert response.status_code == 409


class TestAdminRoutes:
    """Tests for /v1/admin/comments."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/v1/admin/comments/queue"),
            ("GET", "/v1/admin/comments/reported"),
            ("GET", "/v1/admin/comments/stats"),
            ("POST", "/v1/admin/comments/auto-moderate"),
        ],
    )
    def test_requires_admin(
        self, client: TestClient, reader_id: UUID, method: str, path: str
    ) -> None:
        response = client.request(method, path, headers=auth_headers(reader_id))

        assert response.status_code == 403
        assert response.json()["message"] == "Insufficient permission"

    def test_forbidden_before_lookup(self, client: TestClient, reader_id: UUID) -> None:
        response = client.post(
            f"/v1/admin/comments/{uuid4()}/moderate",
            json={"action": "hide"},
            headers=auth_headers(reader_id),
        )

        assert response.status_code == 403

    def test_moderate(
        self,
        client: TestClient,
        reader_id: UUID,
        admin_id: UUID,
        story_id: UUID,
        repository,
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.post(
            f"/v1/admin/comments/{comment['id']}/moderate",
            json={"action": "hide", "reason": "off topic"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["old_status"] == "active"
        assert data["new_status"] == "hidden"
        assert repository.comments[UUID(comment["id"])].status == CommentStatus.HIDDEN

    def test_moderate_invalid_action(
        self, client: TestClient, reader_id: UUID, admin_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.post(
            f"/v1/admin/comments/{comment['id']}/moderate",
            json={"action": "explode"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 400

    def test_moderate_missing_comment(self, client: TestClient, admin_id: UUID) -> None:
        response = client.post(
            f"/v1/admin/comments/{uuid4()}/moderate",
            json={"action": "hide"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 404

    def test_bulk_moderate(
        self, client: TestClient, reader_id: UUID, admin_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)
        missing = str(uuid4())

        response = client.post(
            "/v1/admin/comments/bulk-moderate",
            json={"comment_ids": [comment["id"], missing], "action": "spam"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["successful"] == [comment["id"]]
        assert data["failed"][0]["id"] == missing
        assert data["total_processed"] == 2

    def test_bulk_moderate_over_limit(self, client: TestClient, admin_id: UUID) -> None:
        response = client.post(
            "/v1/admin/comments/bulk-moderate",
            json={"comment_ids": [str(uuid4()) for _ in range(101)], "action": "hide"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 400

    def test_queue(
        self,
        client: TestClient,
        reader_id: UUID,
        admin_id: UUID,
        story_id: UUID,
    ) -> None:
        comment = create(client, reader_id, story_id)
        client.post(
            f"/v1/admin/comments/{comment['id']}/moderate",
            json={"action": "hide"},
            headers=auth_headers(admin_id, role="admin"),
        )

        response = client.get(
            "/v1/admin/comments/queue",
            params={"status": "hidden"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["id"] for c in body["data"]] == [comment["id"]]
        assert body["pagination"]["total"] == 1

    def test_resolve_report(
        self,
        client: TestClient,
        reader_id: UUID,
        author_id: UUID,
        admin_id: UUID,
        story_id: UUID,
    ) -> None:
        comment = create(client, author_id, story_id)
        client.post(
            f"/v1/comments/{comment['id']}/flag",
            json={"reason": "harassment"},
            headers=auth_headers(reader_id),
        )

        response = client.post(
            f"/v1/admin/comments/reported/{comment['id']}/resolve",
            json={"action": "content-hidden", "reason": "confirmed"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert response.json()["message"] == "Report resolved"
        assert data["status"] == "hidden"
        assert data["resolution"]["status"] == "resolved"

    def test_dismiss_without_reports(
        self, client: TestClient, reader_id: UUID, admin_id: UUID, story_id: UUID
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.delete(
            f"/v1/admin/comments/reported/{comment['id']}/dismiss",
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 400

    def test_hard_delete(
        self,
        client: TestClient,
        reader_id: UUID,
        admin_id: UUID,
        story_id: UUID,
        repository,
    ) -> None:
        comment = create(client, reader_id, story_id)

        response = client.request(
            "DELETE",
            f"/v1/admin/comments/{comment['id']}/hard",
            json={"reason": "illegal content"},
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Comment permanently deleted"
        assert UUID(comment["id"]) not in repository.comments

    def test_audit_log(
        self,
        client: TestClient,
        admin_id: UUID,
        admin_notifications,
    ) -> None:
        target_id = uuid4()
        admin_notifications.get_audit_logs_for_target.return_value = [
            {
                "log_id": uuid4(),
                "moderator_id": admin_id,
                "action": "moderate_comment",
                "target_type": "comment",
                "target_id": target_id,
                "details": {"new_status": "hidden"},
                "created_at": "2026-01-01T00:00:00+00:00",
            }
        ]

        response = client.get(
            f"/v1/admin/comments/{target_id}/audit-log",
            headers=auth_headers(admin_id, role="admin"),
        )

        assert response.status_code == 200
        assert response.json()["data"][0]["action"] == "moderate_comment"
        admin_notifications.get_audit_logs_for_target.assert_awaited_once_with(target_id, 50)


class TestServiceUnavailable:
    """Server error responses: 503 keeps its message, other 5xx are masked."""

    def test_missing_comment_service(self, client: TestClient, story_id: UUID) -> None:
        client.app.state.comment_service = None

        response = client.get("/v1/comments", params={"story_id": str(story_id)})

        assert response.status_code == 503
        assert response.json()["message"] == "Comment service unavailable"

    def test_other_server_errors_stay_masked(self, client: TestClient) -> None:
        async def broken() -> None:
            raise HTTPException(status_code=500, detail="keyspace missing")

        client.app.add_api_route("/v1/broken", broken)

        response = client.get("/v1/broken")

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"

"""End-to-end tests through the HTTP surface."""

import base64

import httpx
import pytest

from supportchat.api import create_fastapi_app
from supportchat.app import Application
from supportchat.client import ChatTransport, SyncEngine
from supportchat.config import Settings
from supportchat.errors import InvalidContent, InvalidCursor, NotFound, Unauthorized


@pytest.fixture
async def conversation_id(visitor_client):
    response = await visitor_client.post("/api/chat/bootstrap")
    assert response.status_code == 200
    return response.json()["conversationId"]


async def read(client, conversation_id, prefix="/api/chat", **params):
    response = await client.get(
        f"{prefix}/messages", params={"conversationId": conversation_id, **params}
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestBootstrapRoute:
    async def test_bootstrap_shape(self, visitor_client):
        response = await visitor_client.post("/api/chat/bootstrap")

        data = response.json()
        assert set(data) == {"conversationId", "messages", "hasMore"}
        assert data["messages"] == []
        assert data["hasMore"] is False

    async def test_requires_session(self, make_client):
        async with make_client() as client:
            response = await client.post("/api/chat/bootstrap")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "code": "Unauthorized"}


class TestScenarios:
    """Round trips between the visitor and the operator."""

    async def test_basic_round_trip(self, visitor_client, operator_client, conversation_id):
        response = await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": "hi"}
        )
        assert response.status_code == 200
        message_id = response.json()["message"]["id"]

        [message] = (await read(visitor_client, conversation_id))["messages"]
        assert message["content"] == "hi"
        assert message["is_admin"] is False
        assert message["reactions"] == []
        assert message["reply_to"] is None

        response = await operator_client.post(
            "/api/operator/reactions", json={"messageId": message_id, "emoji": "👍"}
        )
        assert response.json() == {"action": "added", "emoji": "👍"}
        [message] = (await read(visitor_client, conversation_id))["messages"]
        assert message["reactions"] == [
            {"emoji": "👍", "count": 1, "hasAdmin": True, "hasUser": False}
        ]

        response = await operator_client.post(
            "/api/operator/reactions", json={"messageId": message_id, "emoji": "👍"}
        )
        assert response.json()["action"] == "removed"
        [message] = (await read(visitor_client, conversation_id))["messages"]
        assert message["reactions"] == []

    async def test_reply_chain(self, visitor_client, operator_client, conversation_id):
        response = await visitor_client.post(
            "/api/chat/messages",
            json={"conversationId": conversation_id, "content": "question?"},
        )
        question_id = response.json()["message"]["id"]

        await operator_client.post(
            "/api/operator/reply",
            json={
                "conversationId": conversation_id,
                "content": "answer",
                "replyToId": question_id,
            },
        )

        messages = (await read(operator_client, conversation_id, prefix="/api/operator"))[
            "messages"
        ]
        assert messages[1]["is_admin"] is True
        assert messages[1]["reply_to"] == {
            "id": question_id,
            "content": "question?",
            "is_admin": False,
        }

    async def test_forward_poll(self, visitor_client, operator_client, conversation_id):
        first = await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": "one"}
        )
        cursor = first.json()["message"]["id"]
        await operator_client.post(
            "/api/operator/reply", json={"conversationId": conversation_id, "content": "two"}
        )

        page = await read(visitor_client, conversation_id, after=cursor)

        assert [m["content"] for m in page["messages"]] == ["two"]
        assert page["hasMore"] is False

    async def test_typing_is_visible_to_counterpart(
        self, visitor_client, operator_client, conversation_id, clock
    ):
        response = await operator_client.post(
            "/api/operator/typing", json={"conversationId": conversation_id, "isTyping": True}
        )
        assert response.json() == {"ok": True}

        assert (await read(visitor_client, conversation_id))["counterpartTyping"] is True
        clock.advance(5)
        assert (await read(visitor_client, conversation_id))["counterpartTyping"] is False

    async def test_image_upload_and_operator_image_reply(
        self, visitor_client, operator_client, conversation_id
    ):
        data_url = "data:image/png;base64," + base64.b64encode(b"\x89PNG" + b"\x00" * 200).decode()

        response = await visitor_client.post(
            "/api/chat/upload",
            json={
                "conversationId": conversation_id,
                "imageData": data_url,
                "width": 320,
                "height": 240,
            },
        )
        assert response.status_code == 200
        message = response.json()["message"]
        assert (message["image_url"], message["image_width"], message["image_height"]) == (
            data_url,
            320,
            240,
        )

        response = await operator_client.post(
            "/api/operator/reply",
            json={"conversationId": conversation_id, "imageData": data_url, "width": 1, "height": 1},
        )
        assert response.json()["message"]["is_admin"] is True

        response = await operator_client.post(
            "/api/operator/reply",
            json={"conversationId": conversation_id, "content": "see", "imageData": data_url},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidContent"


class TestErrors:
    """Error mapping at the HTTP boundary."""

    async def test_visitor_cookie_is_not_operator(self, visitor_client):
        response = await visitor_client.get("/api/operator/conversations")
        assert response.status_code == 401

    async def test_validation_errors_are_400(self, visitor_client, conversation_id):
        response = await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": " "}
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Message cannot be empty", "code": "InvalidContent"}

    async def test_malformed_request_is_400(self, visitor_client):
        response = await visitor_client.get("/api/chat/messages")

        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"

    async def test_invalid_cursor(self, visitor_client, conversation_id):
        response = await visitor_client.get(
            "/api/chat/messages", params={"conversationId": conversation_id, "before": "nope"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidCursor"

    async def test_invalid_emoji(self, visitor_client, conversation_id):
        response = await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": "hi"}
        )
        response = await visitor_client.post(
            "/api/chat/reactions",
            json={"messageId": response.json()["message"]["id"], "emoji": "🔥"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidEmoji"

    async def test_foreign_conversation_is_404(self, visitor_client):
        response = await visitor_client.get(
            "/api/chat/messages", params={"conversationId": "someone-else"}
        )
        assert response.status_code == 404

    async def test_rate_limit_sets_retry_after(self, visitor_client, conversation_id):
        for i in range(15):
            response = await visitor_client.post(
                "/api/chat/messages",
                json={"conversationId": conversation_id, "content": f"msg {i}"},
            )
            assert response.status_code == 200

        response = await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": "again"}
        )
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["code"] == "RateLimited"


class TestOperatorAndStatus:
    async def test_status_offline_then_online(self, make_client, application):
        async with make_client() as client:
            assert (await client.get("/api/status")).json() == {"online": False}

            await application.auth.issue_operator_session()
            assert (await client.get("/api/status")).json() == {"online": True}

    async def test_conversation_list(self, operator_client, visitor_client, conversation_id):
        response = await operator_client.get("/api/operator/conversations")

        data = response.json()
        assert data["operatorOnline"] is True
        [conversation] = data["conversations"]
        assert conversation["id"] == conversation_id
        assert conversation["visitor_name"] == "Alice"


class TestPushSubscriptionRoutes:
    async def test_subscribe_and_unsubscribe(self, visitor_client, operator_client, application):
        body = {"endpoint": "https://relay/visitor", "keys": {"p256dh": "k", "auth": "a"}}
        assert (await visitor_client.post("/api/push/subscribe", json=body)).json() == {"ok": True}
        await operator_client.post(
            "/api/operator/push/subscribe",
            json={"endpoint": "https://relay/op", "keys": {"p256dh": "k", "auth": "a"}},
        )

        [visitor_sub] = await application.storage.get_push_subscriptions(user_id="visitor1")
        [operator_sub] = await application.storage.get_push_subscriptions(is_operator=True)
        assert visitor_sub.endpoint == "https://relay/visitor"
        assert operator_sub.endpoint == "https://relay/op"

        response = await visitor_client.request(
            "DELETE", "/api/push/subscribe", json={"endpoint": "https://relay/visitor"}
        )
        assert response.json() == {"ok": True}
        assert await application.storage.get_push_subscriptions(user_id="visitor1") == []


class TestControlRoutes:
    async def test_control_routes_are_off_by_default(self, clock):
        application = Application(
            settings=Settings(push_enabled=False), db_path=":memory:", clock=clock
        )
        await application.start()
        try:
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=create_fastapi_app(application)),
                base_url="http://test",
            ) as client:
                for path in (
                    "/api/control/sessions/operator",
                    "/api/control/sessions/visitor",
                    "/api/control/reset",
                ):
                    response = await client.post(path, json={"username": "mallory"})
                    assert response.status_code == 404, path

                response = await client.get("/api/operator/conversations")
                assert response.status_code == 401
        finally:
            await application.stop()

    async def test_visitor_session_route(self, make_client):
        async with make_client() as client:
            response = await client.post(
                "/api/control/sessions/visitor",
                json={"username": "carol", "displayName": "Carol"},
            )
        assert response.status_code == 200
        token = response.json()["token"]
        assert "session=" in response.headers["set-cookie"]

        async with make_client({"session": token}) as client:
            assert (await client.post("/api/chat/bootstrap")).status_code == 200

    async def test_reset(self, visitor_client, conversation_id, make_client):
        async with make_client() as client:
            response = await client.post("/api/control/reset")
        assert response.json() == {"status": "ok"}

        # The visitor's session is gone with the rest of the data
        assert (await visitor_client.post("/api/chat/bootstrap")).status_code == 401

    async def test_sim_not_configured(self, make_client):
        async with make_client() as client:
            response = await client.post("/api/control/sim/start")
        assert response.status_code == 404
        assert response.json()["error"] == "SIM not configured"


class TestEngineOverHttp:
    """The client engine driven against the real server."""

    async def test_visitor_engine_sees_operator_reply(self, visitor_client, operator_client):
        engine = SyncEngine(ChatTransport(visitor_client))
        await engine.open()

        await engine.send_message("hello")
        await operator_client.post(
            "/api/operator/reply",
            json={"conversationId": engine.conversation_id, "content": "hi there"},
        )
        assert await engine.poll_once() is True

        assert [(m.content, m.is_operator) for m in engine.messages] == [
            ("hello", False),
            ("hi there", True),
        ]
        assert all(m.id for m in engine.messages)
        await engine.close()

    async def test_reply_between_own_sends_is_not_skipped(
        self, visitor_client, operator_client
    ):
        engine = SyncEngine(ChatTransport(visitor_client))
        await engine.open()

        await engine.send_message("first")
        assert await engine.poll_once() is True
        await operator_client.post(
            "/api/operator/reply",
            json={"conversationId": engine.conversation_id, "content": "reply"},
        )
        await engine.send_message("second")
        assert await engine.poll_once() is True

        assert [m.content for m in engine.messages] == ["first", "reply", "second"]
        assert await engine.poll_once() is False
        await engine.close()

    async def test_operator_engine_reacts(self, visitor_client, operator_client, conversation_id):
        await visitor_client.post(
            "/api/chat/messages", json={"conversationId": conversation_id, "content": "hi"}
        )
        engine = SyncEngine(
            ChatTransport(operator_client, operator=True),
            conversation_id=conversation_id,
            is_operator=True,
        )
        await engine.open()

        message_id = engine.messages[0].id
        assert await engine.toggle_reaction(message_id, "❤️") == "added"
        [group] = engine.messages[0].reactions
        assert group.has_operator
        await engine.close()

    async def test_errors_map_back_to_taxonomy(self, visitor_client, make_client, conversation_id):
        transport = ChatTransport(visitor_client)

        with pytest.raises(InvalidContent):
            await transport.send_message(conversation_id, "x" * 501)
        with pytest.raises(InvalidCursor):
            await transport.fetch_messages(conversation_id, before="nope")
        with pytest.raises(NotFound):
            await transport.fetch_messages("missing")
        async with make_client() as anonymous:
            with pytest.raises(Unauthorized):
                await ChatTransport(anonymous).bootstrap()

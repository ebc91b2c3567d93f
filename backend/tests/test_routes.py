import pytest
from fastapi.testclient import TestClient

import store
from conftest import FakeLLM, text_response, tool_response
from deps import get_db
from errors import LLMAuthError
from oauth_cookie import COOKIE_NAME, encode_pending


@pytest.fixture
def client(db, settings, services):
    from main import app

    previous = (app.state.settings, app.state.services)
    app.state.settings = settings
    app.state.services = services

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.settings, app.state.services = previous


def _drafted_session(db):
    session = store.create_session(db, business_name="Café Luna")
    post = store.create_post(db, session.id, "☕ 2x1 en frappés todo junio.")
    store.update_session(db, session.id, guardian_stage="content_drafted", active_post_id=post.id)
    return session, post


class TestChatRoute:
    def test_empty_messages_rejected(self, client):
        response = client.post("/api/chat", json={"messages": []})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_last_message_must_be_user(self, client):
        response = client.post("/api/chat", json={"messages": [{"role": "assistant", "content": "Hola"}]})
        assert response.status_code == 400
        assert response.json()["error"] == "last_message_not_user"

    def test_creates_session_and_persists_turn(self, client, db, services):
        services.llm.responses = [text_response("¡Hola! ¿Qué tipo de negocio tiene?")]
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hola"}]})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "¡Hola! ¿Qué tipo de negocio tiene?"
        assert data["truncated"] is False
        assert data["buttons"][0]["id"] == "business_1"
        assert "actionContext" not in data
        assert "charset=utf-8" in response.headers["content-type"]
        assert [m.role for m in store.recent_chat_messages(db, data["sessionId"])] == ["user", "assistant"]

    def test_action_buttons_carry_ids_only(self, client, db, services):
        session, post = _drafted_session(db)
        services.llm.responses = [text_response("Aquí está el texto. ¿Le gusta este texto?")]
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "Escribe el post"}], "sessionId": session.id},
        )
        data = response.json()
        assert data["buttons"][0]["action"] == "approve_text"
        assert data["actionContext"] == {"sessionId": session.id, "postId": post.id}

    def test_guardian_stage_persisted(self, client, db, services):
        session, post = _drafted_session(db)
        services.llm.responses = [
            tool_response("publish_post", {"publish_now": True}),
            text_response("Su post fue publicado con éxito."),
        ]
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "Publícalo"}], "sessionId": session.id},
        )
        assert response.status_code == 200
        assert store.get_session(db, session.id).guardian_stage == "published"
        assert store.get_post(db, post.id).status == "scheduled"
        assert services.late.drafts[0]["content"] == "☕ 2x1 en frappés todo junio."

    def test_completed_connection_clears_cookie(self, client, settings, services):
        client.cookies.set(COOKIE_NAME, encode_pending({"platform": "facebook", "step": "select_page"}, settings.oauth_cookie_secret))
        services.llm.responses = [
            tool_response("complete_connection", {"platform": "facebook", "selection_id": "page-1"}),
            text_response("¡Su página de Facebook está conectada!"),
        ]
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "La primera página"}]})
        assert response.status_code == 200
        set_cookie = response.headers["set-cookie"]
        assert COOKIE_NAME in set_cookie
        assert "Max-Age=0" in set_cookie

    def test_llm_auth_error(self, client, services):
        class BrokenLLM(FakeLLM):
            async def create_message(self, system, messages, tools=None, max_tokens=None):
                raise LLMAuthError("bad key")

        services.llm = BrokenLLM()
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hola"}]})
        assert response.status_code == 502
        assert response.json()["error"] == "llm_auth_error"


class TestActionRoute:
    def test_missing_action(self, client):
        response = client.post("/api/chat/action", json={"params": {"postId": "x"}})
        assert response.status_code == 400
        assert response.json()["error"] == "missing_action"

    def test_missing_params(self, client):
        response = client.post("/api/chat/action", json={"action": "approve_text"})
        assert response.status_code == 400
        assert response.json()["error"] == "missing_params"

    def test_handled_failure_is_422(self, client):
        response = client.post("/api/chat/action", json={"action": "approve_text", "params": {"postId": "nope"}})
        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "message": "No se encontró el post. Intente de nuevo desde el chat.",
            "error": "post_not_found",
        }

    def test_publish_success(self, client, db, services):
        session, post = _drafted_session(db)
        response = client.post(
            "/api/chat/action",
            json={"action": "publish_no_image", "params": {"postId": post.id, "content": "ignored"}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["actionContext"]["postId"] == post.id
        assert services.late.drafts[0]["content"] == "☕ 2x1 en frappés todo junio."

    def test_unexpected_error_is_500(self, client, db, services):
        _, post = _drafted_session(db)

        class ExplodingLate:
            async def list_accounts(self):
                raise RuntimeError("boom")

        services.late = ExplodingLate()
        response = client.post("/api/chat/action", json={"action": "publish_no_image", "params": {"postId": post.id}})
        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"


class TestSessionAndMaintenance:
    def test_session_status(self, client, db):
        session = store.create_session(db, business_name="Café Luna")
        store.create_plan(db, session.id, "Plan de junio", ["A", "B", "C"])
        data = client.get("/api/chat/session", params={"id": session.id}).json()
        assert data["exists"] is True
        assert data["businessName"] == "Café Luna"
        assert data["plan"]["postCount"] == 3

    def test_unknown_session(self, client):
        assert client.get("/api/chat/session", params={"id": "nope"}).json() == {"exists": False, "hasBusinessInfo": False}

    def test_cron_requires_secret(self, client, settings):
        settings.cron_secret = "s3cret"
        assert client.post("/api/cron/context-summaries").status_code == 401
        response = client.post("/api/cron/context-summaries", headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 0, "created": 0}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestOAuthCallback:
    def test_standard_connection(self, client):
        response = client.get("/api/social/callback", params={"connected": "twitter"}, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"].endswith("/chat?connected=twitter")

    def test_headless_sets_cookie(self, client):
        response = client.get(
            "/api/social/callback",
            params={"step": "select_page", "platform": "facebook", "tempToken": "tmp-1", "connect_token": "ct-1"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"].endswith("/chat?pending=facebook")
        assert COOKIE_NAME in response.headers["set-cookie"]

    def test_error(self, client):
        response = client.get("/api/social/callback", params={"error": "denied"}, follow_redirects=False)
        assert response.headers["location"].endswith("/chat?oauth_error=denied")

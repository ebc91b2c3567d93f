import asyncio

import pytest

import store
from action_handler import ActionHandler
from errors import LateApiError
from schemas import ActionParams

IMAGE_URL = "https://replicate.delivery/pbxt/img-1.webp"


@pytest.fixture
def drafted(db):
    session = store.create_session(db, business_name="Café Luna")
    plan = store.create_plan(db, session.id, "Plan de junio", ["Promo de verano", "Menú nuevo"])
    post = store.get_next_pending_post(db, plan.id)
    store.set_post_content(db, post.id, "☕ Verano en Café Luna: 2x1 en frappés todo junio.")
    store.set_post_image_spec(db, post.id, "frappé sobre mesa de madera", "schnell", "1:1", 1)
    return session, plan, store.get_post(db, post.id)


def _handle(db, services, settings, action, **params):
    handler = ActionHandler(db, services, settings)
    return asyncio.run(handler.handle(action, ActionParams(**params)))


class TestResolvePost:
    def test_by_plan_id(self, db, services, settings, drafted):
        _, plan, post = drafted
        assert ActionHandler(db, services, settings).resolve_post(ActionParams(plan_id=plan.id)).id == post.id

    def test_by_session_id(self, db, services, settings, drafted):
        session, _, post = drafted
        assert ActionHandler(db, services, settings).resolve_post(ActionParams(session_id=session.id)).id == post.id

    def test_unknown_post(self, db, services, settings, drafted):
        result = _handle(db, services, settings, "approve_text", post_id="missing")
        assert not result.success
        assert result.error == "post_not_found"


class TestApproveText:
    def test_offers_image_when_described(self, db, services, settings, drafted):
        _, _, post = drafted
        result = _handle(db, services, settings, "approve_text", post_id=post.id)
        assert result.success
        assert [b.action for b in result.buttons] == ["generate_image", "publish_no_image"]
        assert result.action_context["postId"] == post.id

    def test_publish_only_without_image_prompt(self, db, services, settings):
        session = store.create_session(db)
        post = store.create_post(db, session.id, "Texto sin imagen")
        result = _handle(db, services, settings, "approve_text", post_id=post.id)
        assert [b.action for b in result.buttons] == ["publish_no_image"]


class TestGenerateImage:
    def test_stores_image(self, db, services, settings, drafted):
        session, _, post = drafted
        result = _handle(db, services, settings, "generate_image", post_id=post.id)
        assert result.success
        assert result.image_url == IMAGE_URL
        assert services.images.calls[0]["prompt"] == "frappé sobre mesa de madera"
        assert store.get_post(db, post.id).image_url == IMAGE_URL
        assert store.get_session(db, session.id).guardian_stage == "image_generated"
        assert [b.action for b in result.buttons] == ["approve_and_publish", "regenerate_image", "publish_no_image"]

    def test_missing_prompt(self, db, services, settings):
        session = store.create_session(db)
        post = store.create_post(db, session.id, "Texto")
        result = _handle(db, services, settings, "regenerate_image", post_id=post.id)
        assert result.error == "missing_prompt"

    def test_provider_failure(self, db, services, settings, drafted):
        services.images.success = False
        result = _handle(db, services, settings, "generate_image", post_id=drafted[2].id)
        assert not result.success
        assert result.error == "image_error"


class TestPublish:
    def test_publishes_stored_content(self, db, services, settings, drafted):
        _, plan, post = drafted
        store.set_post_image(db, post.id, IMAGE_URL)

        result = _handle(db, services, settings, "approve_and_publish", post_id=post.id, publish_now=True)

        assert result.success
        draft = services.late.drafts[0]
        assert draft["content"] == "☕ Verano en Café Luna: 2x1 en frappés todo junio."
        assert draft["media_items"] == [{"type": "image", "url": IMAGE_URL}]
        assert services.late.activations[0]["activation"] == {"publishNow": True}
        assert store.get_plan(db, plan.id).posts_published == 1
        assert store.get_post(db, post.id).status == "scheduled"
        assert "1/2" in result.message
        assert result.buttons[0].id == "next_post"

    def test_publish_no_image_skips_media(self, db, services, settings, drafted):
        _, _, post = drafted
        store.set_post_image(db, post.id, IMAGE_URL)
        result = _handle(db, services, settings, "publish_no_image", post_id=post.id)
        assert result.success
        assert services.late.drafts[0]["media_items"] == []

    def test_repeat_does_not_double_count(self, db, services, settings, drafted):
        _, plan, post = drafted
        _handle(db, services, settings, "publish_no_image", post_id=post.id)
        _handle(db, services, settings, "publish_no_image", post_id=post.id)
        assert len(services.late.drafts) == 1
        assert store.get_plan(db, plan.id).posts_published == 1

    def test_last_post_completes_plan(self, db, services, settings):
        session = store.create_session(db)
        plan = store.create_plan(db, session.id, "Plan corto", ["Único"])
        post = store.get_next_pending_post(db, plan.id)
        store.set_post_content(db, post.id, "Último post del plan")
        result = _handle(db, services, settings, "publish_no_image", post_id=post.id)
        assert [b.id for b in result.buttons] == ["more_posts", "plan_complete"]

    def test_activation_failure_keeps_draft(self, db, services, settings, drafted):
        _, plan, post = drafted
        services.late.activate_error = LateApiError("bad", status=400, body="invalid schedule")
        result = _handle(db, services, settings, "publish_no_image", post_id=post.id)
        assert not result.success
        assert result.error == "activate_error"
        assert store.get_post(db, post.id).late_draft_id == "draft-1"
        assert store.get_plan(db, plan.id).posts_published == 0

        services.late.activate_error = None
        retry = _handle(db, services, settings, "publish_no_image", post_id=post.id)
        assert retry.success
        assert len(services.late.drafts) == 1
        assert services.late.activations[0]["draft_id"] == "draft-1"

    def test_no_accounts(self, db, services, settings, drafted):
        services.late.accounts = []
        result = _handle(db, services, settings, "publish_no_image", post_id=drafted[2].id)
        assert result.error == "no_accounts"


def test_unknown_action(db, services, settings):
    result = _handle(db, services, settings, "delete_everything", post_id="x")
    assert result.error == "unknown_action"

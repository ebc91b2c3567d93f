import store
from guardian import create_initial_state, Stage


def _plan(db, titles=("Promo de verano", "Menú nuevo")):
    session = store.create_session(db, business_name="Café Luna")
    plan = store.create_plan(db, session.id, "Plan de junio", list(titles))
    return session, plan


class TestPlans:
    def test_create_plan_creates_pending_posts(self, db):
        session, plan = _plan(db)
        posts = store.get_posts_by_plan(db, plan.id)
        assert [p.title for p in posts] == ["Promo de verano", "Menú nuevo"]
        assert all(p.status == "pending" for p in posts)
        assert plan.post_count == 2
        assert plan.status == "approved"
        assert store.get_session(db, session.id).active_plan_id == plan.id
        assert store.get_active_plan(db, session.id).id == plan.id

    def test_next_pending_and_latest_drafted(self, db):
        _, plan = _plan(db)
        first = store.get_next_pending_post(db, plan.id)
        assert first.order_num == 1
        store.set_post_content(db, first.id, "Texto del primer post")
        assert store.get_latest_drafted_post(db, plan.id).id == first.id
        assert store.get_next_pending_post(db, plan.id).order_num == 2


class TestRecordPublish:
    def test_increments_counter_once(self, db):
        _, plan = _plan(db)
        post = store.get_next_pending_post(db, plan.id)
        store.set_post_content(db, post.id, "Texto")

        first = store.record_publish(db, post.id, "late-1")
        again = store.record_publish(db, post.id, "late-1")

        assert first["posts_published"] == 1
        assert not first["already_recorded"]
        assert again["posts_published"] == 1
        assert again["already_recorded"]
        assert store.get_plan(db, plan.id).status == "in_progress"
        assert store.get_post(db, post.id).status == "scheduled"

    def test_completes_plan(self, db):
        _, plan = _plan(db, titles=("Único post",))
        post = store.get_next_pending_post(db, plan.id)
        result = store.record_publish(db, post.id, "late-1", scheduled_for="2026-07-01T10:00:00")
        assert result["plan_completed"]
        assert store.get_plan(db, plan.id).status == "completed"
        assert store.get_post(db, post.id).scheduled_for == "2026-07-01T10:00:00"

    def test_post_without_plan(self, db):
        session = store.create_session(db)
        post = store.create_post(db, session.id, "Post suelto")
        result = store.record_publish(db, post.id, "late-2")
        assert result["plan_id"] is None
        assert result["posts_published"] == 0


class TestAccountsAndMessages:
    def test_save_connected_account_upserts(self, db):
        session = store.create_session(db)
        store.save_connected_account(db, session.id, "facebook", "acc-1", "cafe")
        store.save_connected_account(db, session.id, "facebook", "acc-1", "cafe_luna")
        accounts = store.get_connected_accounts(db, session.id)
        assert len(accounts) == 1
        assert accounts[0].username == "cafe_luna"

    def test_messages_skip_blank(self, db):
        session = store.create_session(db)
        added = store.append_chat_messages(db, session.id, [
            {"role": "user", "content": "Hola"},
            {"role": "assistant", "content": "  "},
            {"role": "assistant", "content": "¡Bienvenido!"},
        ])
        assert added == 2
        assert [m.content for m in store.recent_chat_messages(db, session.id)] == ["Hola", "¡Bienvenido!"]


class TestGuardianSnapshot:
    def test_roundtrip_through_session(self, db):
        session, plan = _plan(db)
        post = store.get_next_pending_post(db, plan.id)
        store.set_post_content(db, post.id, "Texto")
        store.set_post_image_spec(db, post.id, "taza de café", "pro", "4:5", 2)
        store.persist_guardian_snapshot(db, session.id, {
            "stage": "image_offered",
            "active_plan_id": plan.id,
            "active_post_id": post.id,
        })

        state = create_initial_state(store.load_guardian_snapshot(db, session.id))

        assert state.stage == Stage.IMAGE_OFFERED
        assert state.active_post_id == post.id
        assert state.plan_post_count == 2
        assert state.last_image_spec.model == "pro"
        assert state.last_image_spec.aspect_ratio == "4:5"

    def test_clearing_active_post(self, db):
        session, plan = _plan(db)
        store.persist_guardian_snapshot(db, session.id, {"stage": "planning", "active_plan_id": plan.id, "active_post_id": "x"})
        store.persist_guardian_snapshot(db, session.id, {"stage": "planning", "active_plan_id": plan.id, "active_post_id": None})
        assert store.get_session(db, session.id).active_post_id is None

    def test_missing_session(self, db):
        assert store.load_guardian_snapshot(db, "nope") == {}

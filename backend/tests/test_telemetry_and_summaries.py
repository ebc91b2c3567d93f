import asyncio
import json

import store
from conftest import FakeLLM
from context_summarizer import generate_all_context_summaries
from telemetry import GuardianTelemetry


class TestGuardianTelemetry:
    def test_summary_counts(self, tmp_path):
        telemetry = GuardianTelemetry(tmp_path / "t.log")
        telemetry.record("tool_blocked", {"reason": "draft_first_publish"})
        telemetry.record("end_turn_fail_open", {"reason": "publish_claim_without_tool"})
        telemetry.record("publish_success", {"post_id": "p1"})
        telemetry.record("publish_failed", {"post_id": "p2"})

        summary = telemetry.summary(hours=1)

        assert summary["counts"]["tool_blocked"] == 1
        assert summary["block_reason_counts"] == {"draft_first_publish": 1, "publish_claim_without_tool": 1}
        assert summary["publish_failure_rate_percent"] == 50.0
        assert summary["fail_open_count"] == 1

    def test_old_and_broken_lines(self, tmp_path):
        path = tmp_path / "t.log"
        path.write_text(
            json.dumps({"ts": "2001-01-01T00:00:00+00:00", "event": "loop_truncated"}) + "\nnot json\n",
            encoding="utf-8",
        )
        summary = GuardianTelemetry(path).summary()
        assert summary["counts"] == {}
        assert summary["parse_errors"] == 1

    def test_disabled_writes_nothing(self, tmp_path):
        path = tmp_path / "t.log"
        GuardianTelemetry(path, enabled=False).record("loop_truncated")
        assert not path.exists()


class TestContextSummaries:
    def test_summarizes_busy_sessions_only(self, db, settings):
        busy = store.create_session(db, business_name="Café Luna")
        store.update_session(db, busy.id, status="active")
        quiet = store.create_session(db)
        store.update_session(db, quiet.id, status="active")
        store.append_chat_messages(db, busy.id, [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"mensaje {i}"} for i in range(12)
        ])
        store.append_chat_messages(db, quiet.id, [{"role": "user", "content": "hola"}])
        llm = FakeLLM(text="Prefiere tono cercano. Aprobó el plan de junio.")

        result = asyncio.run(generate_all_context_summaries(db, llm, settings))

        assert result == {"processed": 2, "created": 1}
        summary = store.get_latest_summary(db, busy.id)
        assert summary.summary == "Prefiere tono cercano. Aprobó el plan de junio."
        assert summary.message_count == 12
        assert "Cliente: mensaje 0" in llm.calls[0]["prompt"]

    def test_waits_for_new_messages(self, db, settings):
        session = store.create_session(db)
        store.update_session(db, session.id, status="active")
        store.append_chat_messages(db, session.id, [{"role": "user", "content": f"m{i}"} for i in range(10)])
        llm = FakeLLM()
        asyncio.run(generate_all_context_summaries(db, llm, settings))
        store.append_chat_messages(db, session.id, [{"role": "user", "content": "otro"}])

        result = asyncio.run(generate_all_context_summaries(db, llm, settings))

        assert result["created"] == 0
        assert len(llm.calls) == 1

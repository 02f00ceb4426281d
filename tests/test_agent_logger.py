"""Tests for the Markdown flow audit log."""

from voicebank.logging.agent_logger import AgentLogger


async def test_entries_written(tmp_path):
    log_path = tmp_path / "logs" / "agent_log.md"
    agent_logger = AgentLogger(str(log_path))
    await agent_logger.initialize_log()

    await agent_logger.log_session_start("s-1", "hi")
    await agent_logger.log_user_utterance("s-1", "••••", "authenticate")
    await agent_logger.log_auth_attempt("s-1", "pin", "rejected", "Attempts: 1/3")
    await agent_logger.log_auth_attempt("s-1", "voice", "accepted", "Attempts: 1/3", score=0.85)
    await agent_logger.log_transaction("s-1", "debit", 500, "submitted")
    await agent_logger.log_error("s-1", "RuntimeError", "boom", stack_trace="Traceback ...")
    await agent_logger.close()

    content = log_path.read_text(encoding="utf-8")
    assert "Voice Banking Flow Log" in content
    assert "Flow Started: `s-1`" in content
    assert '**Transcript:** "••••"' in content
    assert "**Attempts: 1/3**" in content
    assert "**Score:** 0.85" in content
    assert "| Amount | ₹500 |" in content
    assert "| Reason | - |" in content
    assert "<summary>Stack Trace</summary>" in content


def test_writes_synchronously_without_loop(tmp_path):
    log_path = tmp_path / "agent_log.md"
    agent_logger = AgentLogger(str(log_path))
    assert agent_logger._writer_task is None

    agent_logger._sync_write("entry")
    assert log_path.read_text(encoding="utf-8") == "entry\n"

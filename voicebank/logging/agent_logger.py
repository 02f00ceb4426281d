"""
Flow Audit Logger.
Writes a human-readable Markdown trail of every voice flow: what the user
said, what the assistant answered, stage changes, authentication attempts
and ledger outcomes.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AgentLogger:
    """
    Markdown audit logger for voice flows.

    Entries go through an asyncio queue drained by a background writer when
    an event loop is running, and are written synchronously otherwise.
    Callers mask PIN utterances before they get here.
    """

    def __init__(self, log_path: str = "logs/agent_log.md"):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer_task: Optional[asyncio.Task] = None
        self._running = False

        self._start_writer()

    def _start_writer(self):
        """Start the background log writer if a loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._writer_task = loop.create_task(self._write_loop())
        self._running = True

    async def _write_loop(self):
        while self._running:
            try:
                entry = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                self._sync_write(entry)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Log writer error: {e}")

    def _sync_write(self, entry: str):
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(entry)
                f.write("\n")
        except OSError as e:
            logger.error(f"Failed to write log: {e}")

    async def _log(self, entry: str):
        if self._running and self._writer_task:
            await self._queue.put(entry)
        else:
            self._sync_write(entry)

    # =========================
    # Public Logging Methods
    # =========================

    async def log_session_start(self, session_id: str, language: str = "hi"):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        entry = f"""
---

## 🆕 Flow Started: `{session_id}`

**Timestamp:** {timestamp}
**Language:** {language}
"""
        await self._log(entry)

    async def log_flow_started(self, session_id: str, kind: str, user_id: str):
        entry = f"""**Flow:** {kind}
**User:** `{user_id}`

---
"""
        await self._log(entry)

    async def log_user_utterance(self, session_id: str, text: str, stage: str):
        timestamp = datetime.now().strftime("%H:%M:%S")
        entry = f"""### 🎤 User | {timestamp}

**Session:** `{session_id}`
**Stage:** {stage}
**Transcript:** "{text}"
"""
        await self._log(entry)

    async def log_assistant_prompt(self, session_id: str, text: str, stage: str):
        timestamp = datetime.now().strftime("%H:%M:%S")
        entry = f"""### 🤖 Assistant | {timestamp}

**Stage:** {stage}

> {text}
"""
        await self._log(entry)

    async def log_auth_attempt(
        self,
        session_id: str,
        method: str,
        outcome: str,
        attempts_label: str,
        score: Optional[float] = None
    ):
        timestamp = datetime.now().strftime("%H:%M:%S")
        indicator = "🟢" if outcome == "accepted" else "🔴" if outcome == "exhausted" else "🟡"
        entry = f"""#### 🔒 Authentication | {timestamp}

**Session:** `{session_id}`
**Method:** {method}
**Outcome:** {indicator} {outcome}
**{attempts_label}**
{f'**Score:** {score:.2f}' if score is not None else ''}
"""
        await self._log(entry)

    async def log_transaction(
        self,
        session_id: str,
        tx_type: str,
        amount: int,
        status: str,
        reason: Optional[str] = None
    ):
        timestamp = datetime.now().strftime("%H:%M:%S")
        entry = f"""### 💸 Transaction | {timestamp}

**Session:** `{session_id}`

| Field | Value |
|-------|-------|
| Type | {tx_type} |
| Amount | ₹{amount} |
| Status | {status} |
| Reason | {reason or '-'} |
"""
        await self._log(entry)

    async def log_error(
        self,
        session_id: str,
        error_type: str,
        error_message: str,
        stack_trace: Optional[str] = None
    ):
        timestamp = datetime.now().strftime("%H:%M:%S")
        entry = f"""### ❌ Error | {timestamp}

**Session:** `{session_id}`
**Type:** `{error_type}`
**Message:** {error_message}
"""
        if stack_trace:
            entry += f"""
<details>
<summary>Stack Trace</summary>

```
{stack_trace}
```

</details>
"""
        await self._log(entry)

    async def log_system_event(self, event: str, details: Dict[str, Any]):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        details_str = ""
        for key, value in details.items():
            details_str += f"- **{key}:** {value}\n"

        entry = f"""### ⚙️ System Event | {timestamp}

**Event:** {event}

{details_str}
---
"""
        await self._log(entry)

    async def initialize_log(self):
        """Start a fresh log file with a header."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        header = f"""# 🎙️ Voice Banking Flow Log

**Generated:** {timestamp}

Flows: send money, pay bills, PIN setup.
Authentication: voice biometrics or spoken PIN (PIN utterances are masked).

---

## Execution Log

"""
        with open(self.log_path, "w", encoding="utf-8") as f:
            f.write(header)

        logger.info(f"Agent log initialized: {self.log_path}")

    async def close(self):
        """Stop the writer and flush pending entries."""
        self._running = False

        if self._writer_task:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

        while not self._queue.empty():
            self._sync_write(self._queue.get_nowait())

        logger.info("Agent logger closed")

"""
Flow Session Management.
Keeps the live flow controllers and PIN setups, one active flow per user,
with idle expiry and a background cleanup task.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from voicebank.config import get_settings
from voicebank.core.exceptions import SessionNotFoundException
from voicebank.core.flow import (
    BankingContext,
    CancelRequested,
    FlowController,
    FlowKind,
    FlowServices,
    Stage,
)
from voicebank.core.pin_setup import PinSetupController

logger = logging.getLogger(__name__)
settings = get_settings()


class FlowSessionManager:
    """
    Stores flow controllers keyed by session id.

    Starting a flow for a user who already has an unfinished one cancels
    the old one first.
    """

    def __init__(self):
        self._flows: Dict[str, FlowController] = {}
        self._user_flows: Dict[str, str] = {}
        self._pin_setups: Dict[str, PinSetupController] = {}
        self._pin_setup_activity: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the cleanup task."""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Flow session manager started")

    async def stop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        logger.info("Flow session manager stopped")

    async def create_flow(
        self,
        kind: FlowKind,
        context: BankingContext,
        services: FlowServices
    ) -> FlowController:
        """Create and start a flow, replacing the user's previous one."""
        async with self._lock:
            previous_id = self._user_flows.get(context.user_id)
            previous = self._flows.get(previous_id) if previous_id else None

            if len(self._flows) >= settings.MAX_SESSIONS:
                self._evict_oldest()

            controller = FlowController(kind, context, services)
            self._flows[controller.session.session_id] = controller
            self._user_flows[context.user_id] = controller.session.session_id

        if previous is not None:
            await self._retire(previous)

        logger.info(
            f"Created {kind.value} flow {controller.session.session_id} for {context.user_id}"
        )
        await controller.start()
        return controller

    async def get_flow(self, session_id: str) -> FlowController:
        async with self._lock:
            controller = self._flows.get(session_id)
            if controller and controller.session.is_expired():
                self._remove_flow(session_id)
                controller = None

        if controller is None:
            raise SessionNotFoundException(session_id)
        return controller

    async def get_active_flow(self, user_id: str) -> Optional[FlowController]:
        async with self._lock:
            session_id = self._user_flows.get(user_id)
            return self._flows.get(session_id) if session_id else None

    async def delete_flow(self, session_id: str):
        async with self._lock:
            self._remove_flow(session_id)

    async def get_active_flow_count(self) -> int:
        async with self._lock:
            return sum(
                1 for c in self._flows.values()
                if not c.session.is_terminal and not c.session.is_expired()
            )

    async def create_pin_setup(self, user_id: str, security, language: str = "hi") -> PinSetupController:
        controller = PinSetupController(user_id, security, language=language)
        async with self._lock:
            self._pin_setups[controller.setup_id] = controller
            self._pin_setup_activity[controller.setup_id] = datetime.now()
        return controller

    async def get_pin_setup(self, setup_id: str) -> PinSetupController:
        async with self._lock:
            controller = self._pin_setups.get(setup_id)
            if controller is None:
                raise SessionNotFoundException(setup_id)
            self._pin_setup_activity[setup_id] = datetime.now()
            return controller

    async def _retire(self, controller: FlowController):
        """Cancel a replaced flow unless it already finished or is executing."""
        if controller.session.is_terminal or controller.session.stage == Stage.EXECUTE:
            return
        logger.info(f"Cancelling replaced flow {controller.session.session_id}")
        await controller.dispatch(CancelRequested())

    def _remove_flow(self, session_id: str):
        """Remove a flow (must be called with lock held)."""
        controller = self._flows.pop(session_id, None)
        if controller is None:
            return
        user_id = controller.session.user_id
        if self._user_flows.get(user_id) == session_id:
            del self._user_flows[user_id]
        logger.info(f"Removed flow: {session_id}")

    def _evict_oldest(self):
        """Evict the least recently active flow (must be called with lock held)."""
        if not self._flows:
            return
        oldest = min(self._flows.values(), key=lambda c: c.session.last_activity)
        self._remove_flow(oldest.session.session_id)

    async def _cleanup_loop(self):
        """Periodically drop expired flows and abandoned PIN setups."""
        while True:
            try:
                await asyncio.sleep(60)

                async with self._lock:
                    expired = [
                        sid for sid, controller in self._flows.items()
                        if controller.session.is_expired()
                    ]
                    for sid in expired:
                        self._remove_flow(sid)

                    cutoff = datetime.now() - timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)
                    stale = [
                        sid for sid, seen in self._pin_setup_activity.items()
                        if seen < cutoff
                    ]
                    for sid in stale:
                        self._pin_setups.pop(sid, None)
                        self._pin_setup_activity.pop(sid, None)

                    if expired or stale:
                        logger.info(
                            f"Cleaned up {len(expired)} expired flows and {len(stale)} PIN setups"
                        )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in flow cleanup: {e}")

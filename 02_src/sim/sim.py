"""SIM implementation - scripted visitors for exercising the sync loop."""

import asyncio
import random
from typing import Protocol

import httpx

from supportchat.client import ChatTransport, SyncEngine
from supportchat.errors import ChatError
from supportchat.logging_config import get_logger

logger = get_logger(__name__)


class ISim(Protocol):
    """Generate chat traffic against a running server."""

    async def start(self) -> None:
        """Start scripted scenario."""
        ...

    async def stop(self) -> None:
        """Stop scenario."""
        ...


class Sim:
    """SIM with a hardcoded visitor scenario."""

    def __init__(
        self,
        api_url: str = "http://localhost:8000",
        typing_delay: tuple[float, float] = (0.1, 0.3),
        message_delay: tuple[float, float] = (1.0, 3.0),
    ):
        self._api_url = api_url
        self._typing_delay = typing_delay
        self._message_delay = message_delay
        self._running = False
        self._task: asyncio.Task | None = None
        self._clients: list[httpx.AsyncClient] = []
        self._engines: list[SyncEngine] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start scripted scenario."""
        if self._running:
            return

        self._running = True

        # Start background task
        self._task = asyncio.create_task(self._run_scenario())

    async def stop(self) -> None:
        """Stop scenario."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for engine in self._engines:
            await engine.close()
        self._engines.clear()

        for client in self._clients:
            await client.aclose()
        self._clients.clear()

    async def _run_scenario(self) -> None:
        """Run hardcoded scenario."""
        # Define virtual visitors
        visitors = [
            {"username": "alice", "display_name": "Alice"},
            {"username": "bob", "display_name": "Bob"},
        ]

        # Define messages for each visitor
        messages_per_visitor = [
            ["Hi! Is anyone there?", "I can't log in to my account", "Thanks, that worked!"],
            ["Hello", "Where can I find my invoices?", "Got it, thank you"],
        ]

        try:
            engines = []
            for visitor in visitors:
                engine = await self._open_visitor(visitor)
                if engine:
                    engines.append(engine)

            logger.info("SIM started with %d visitors", len(engines))

            # Send messages with delays
            for i in range(3):  # 3 rounds of messages
                if not self._running:
                    break

                for engine, lines in zip(engines, messages_per_visitor):
                    if not self._running:
                        break

                    if i < len(lines):
                        await self._type_and_send(engine, lines[i])
                        await self._react_to_operator(engine)

                        # Random delay between messages
                        await asyncio.sleep(random.uniform(*self._message_delay))

                # Small delay between rounds
                await asyncio.sleep(2)

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("SIM scenario error: %s", e)
        finally:
            logger.info("SIM completed")

    async def _open_visitor(self, visitor: dict) -> SyncEngine | None:
        """Create a visitor session and open its conversation."""
        client = httpx.AsyncClient(base_url=self._api_url, timeout=10.0)
        self._clients.append(client)

        try:
            response = await client.post(
                "/api/control/sessions/visitor",
                json={
                    "username": visitor["username"],
                    "displayName": visitor["display_name"],
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("SIM: Failed to create session for %s: %s", visitor["username"], e)
            return None

        engine = SyncEngine(ChatTransport(client))
        try:
            await engine.open()
        except ChatError as e:
            logger.error("SIM: Failed to open conversation: %s", e)
            return None

        engine.start_polling()
        self._engines.append(engine)
        return engine

    async def _type_and_send(self, engine: SyncEngine, text: str) -> None:
        """Type a few keystrokes, then send through the engine."""
        for _ in range(min(len(text), 5)):
            await engine.on_keystroke()
            await asyncio.sleep(random.uniform(*self._typing_delay))

        try:
            await engine.send_message(text)
            logger.info("SIM: %s -> %s", engine.conversation_id, text)
        except ChatError as e:
            logger.error("SIM: Error sending message: %s", e)

    async def _react_to_operator(self, engine: SyncEngine) -> None:
        """Like the newest operator reply, if there is one."""
        replies = [m for m in engine.messages if m.is_operator and m.id]
        if not replies:
            return

        target = replies[-1]
        if any(r.has_visitor for r in target.reactions):
            return

        try:
            await engine.toggle_reaction(target.id, "👍")
        except ChatError as e:
            logger.error("SIM: Error reacting: %s", e)

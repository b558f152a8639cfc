"""Registration handshake: builds the command registry from other modules.

Runs once per process:

1. Subscribe: hook the core's ``cmdhandler_regevent`` broadcast so live
   register/unregister events reach the registry.
2. Discover: ask the core for every module, wait for command-source
   modules that are still starting, then pull each one's ``cmd_list``.
3. Settle: give concurrently starting modules a fixed grace period, then
   release the readiness barrier for good.

A module that times out or answers garbage is logged and skipped; it
never delays the barrier beyond the grace period.
"""

import asyncio
import logging
import secrets
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from .args import parse_args
from .registry import CommandDefinition, CommandRegistry
from ..core.bus import CoreBus, Responder
from ..core.protocol import (
    CommandAnnouncement,
    CommandListResponse,
    ModuleInfo,
    RegistrationEvent,
)

logger = logging.getLogger("cmc_discord.commands.handshake")

CORE = "core"
REGISTRATION_EVENT = "cmdhandler_regevent"
COMMAND_SOURCE_TYPE = "cmd_handler"

DEFAULT_DISCOVERY_TIMEOUT = 10.0
DEFAULT_GRACE_PERIOD = 10.0

# Headroom over the core-side wait_for_module timeout before we stop waiting locally
_WAIT_SLACK = 1.0


class ReadinessBarrier:
    """One-shot gate: pending -> ready, exactly once.

    Waiters that arrive after the release return immediately.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self._event.is_set()

    def release(self) -> bool:
        """Open the gate. Returns False if it was already open."""
        if self._event.is_set():
            return False
        self._event.set()
        logger.info("Readiness barrier released.")
        return True

    async def wait(self):
        await self._event.wait()


class RegistrationHandshake:
    """Populates a CommandRegistry from the core, then releases the barrier."""

    def __init__(
        self,
        bus: CoreBus,
        registry: CommandRegistry,
        barrier: ReadinessBarrier,
        platform: str = "Discord",
        discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.bus = bus
        self.registry = registry
        self.barrier = barrier
        self.platform = platform
        self.discovery_timeout = discovery_timeout
        self.grace_period = grace_period
        self._sleep = sleep
        self.hook_id: Optional[str] = None

    async def run(self):
        """Subscribe, discover, settle. Always ends with the barrier released."""
        try:
            await self.subscribe()
        except Exception as e:
            logger.warning(f"Could not subscribe to command events: {e}", exc_info=True)

        try:
            await self.discover()
        except Exception as e:
            logger.warning(f"Command discovery aborted: {e}", exc_info=True)

        await self.settle()

    # ── Phase 1: subscribe ──────────────────────────────────────

    async def subscribe(self):
        self.hook_id = secrets.token_hex(12)
        self.bus.on(self.hook_id, self.handle_registration_event)
        result = await self.bus.call(CORE, "register_event_hook", {
            "callbackFunction": self.hook_id,
            "eventName": REGISTRATION_EVENT,
        })
        if not result.exists:
            logger.warning("Core refused the command event hook; live command updates will be missed.")

    def handle_registration_event(self, origin: str, payload: Any, respond: Responder):
        """Apply one live register/unregister event from the core."""
        if origin != CORE:
            logger.warning(f"Rejected command event from untrusted origin '{origin}'")
            respond(None, False)
            return

        try:
            event = RegistrationEvent.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Rejected malformed command event: {e.error_count()} validation errors")
            respond(None, False)
            return

        if event.event_name != REGISTRATION_EVENT:
            respond(None, False)
            return

        data = event.event_data
        if data.is_register_event:
            self.install(data)
        else:
            self.registry.unregister(data.command)
        respond(None, True)

    # ── Phase 2: discover ───────────────────────────────────────

    async def discover(self):
        result = await self.bus.call(CORE, "get_registered_modules", {})
        if not result.exists or not isinstance(result.data, list):
            logger.warning("Core did not return a module list; no commands discovered.")
            return

        for raw in result.data:
            try:
                module = ModuleInfo.model_validate(raw)
            except ValidationError:
                logger.warning(f"Skipping malformed module entry: {raw!r}")
                continue

            if module.type != COMMAND_SOURCE_TYPE:
                continue

            try:
                await self.discover_module(module)
            except Exception as e:
                logger.warning(f"Discovery of module '{module.namespace}' failed: {e}")

        logger.info(f"Discovery finished: {len(self.registry)} commands known.")

    async def discover_module(self, module: ModuleInfo) -> int:
        """Pull one command source's catalog. Returns the number installed."""
        if not module.running and not await self._wait_for(module):
            logger.warning(f"Command source '{module.namespace}' did not start in time, skipping.")
            return 0

        try:
            result = await asyncio.wait_for(
                self.bus.call(module.module_id, "cmd_list", {}),
                timeout=self.discovery_timeout + _WAIT_SLACK,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Command source '{module.namespace}' did not answer cmd_list, skipping.")
            return 0

        if not result.exists or not isinstance(result.data, dict):
            logger.warning(f"Command source '{module.namespace}' returned no command list.")
            return 0

        try:
            listing = CommandListResponse.model_validate(result.data)
        except ValidationError:
            logger.warning(f"Command source '{module.namespace}' returned a malformed command list.")
            return 0

        installed = 0
        for raw in listing.commands:
            try:
                announcement = CommandAnnouncement.model_validate(raw)
            except ValidationError:
                logger.warning(f"Skipping malformed command from '{module.namespace}': {raw!r}")
                continue
            if self.install(announcement):
                installed += 1

        logger.info(f"Loaded {installed} commands from '{module.namespace}'.")
        return installed

    async def _wait_for(self, module: ModuleInfo) -> bool:
        timeout_ms = int(self.discovery_timeout * 1000)
        try:
            result = await asyncio.wait_for(
                self.bus.call(CORE, "wait_for_module", {
                    "moduleNamespace": module.namespace,
                    "timeout": timeout_ms,
                }),
                timeout=self.discovery_timeout + _WAIT_SLACK,
            )
        except asyncio.TimeoutError:
            return False
        return bool(result.exists and result.data)

    # ── Phase 3: settle ─────────────────────────────────────────

    async def settle(self):
        await self._sleep(self.grace_period)
        self.barrier.release()

    # ── Shared ──────────────────────────────────────────────────

    def install(self, announcement: CommandAnnouncement) -> bool:
        """Parse and register one announced command, if it targets this platform."""
        if not announcement.supports(self.platform):
            logger.debug(f"Command '{announcement.command}' is not for {self.platform}, ignored.")
            return False

        self.registry.register(announcement.command, CommandDefinition(
            name=announcement.command,
            args=parse_args(announcement.args, announcement.args_name),
            description=announcement.description,
        ))
        return True

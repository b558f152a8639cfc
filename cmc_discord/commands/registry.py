"""Command registry: commands announced by command-source modules."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .args import ArgumentSpec

logger = logging.getLogger("cmc_discord.commands.registry")

REGISTER = "register"
UNREGISTER = "unregister"


@dataclass
class CommandDefinition:
    name: str
    args: list[ArgumentSpec] = field(default_factory=list)
    description: dict[str, str] = field(default_factory=lambda: {"fallback": "FALLBACK_UNKNOWN"})


@dataclass(frozen=True)
class RegistryEvent:
    kind: str                                   # REGISTER | UNREGISTER
    name: str
    definition: Optional[CommandDefinition] = None


RegistryListener = Callable[[RegistryEvent], None]


class CommandRegistry:
    """Name -> CommandDefinition store with change notifications.

    Listeners are called synchronously after every mutation, both for
    bulk discovery and for live register/unregister events, so a
    consumer never has to rescan the table to stay current.
    """

    def __init__(self):
        self._commands: dict[str, CommandDefinition] = {}
        self._listeners: list[RegistryListener] = []
        self._revision = 0

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Add a listener. Returns a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def register(self, name: str, definition: CommandDefinition):
        """Insert or replace a command."""
        self._commands[name] = definition
        self._revision += 1
        logger.debug(f"Registered command: {name} ({len(definition.args)} args)")
        self._notify(RegistryEvent(REGISTER, name, definition))

    def unregister(self, name: str) -> bool:
        """Remove a command. Returns False if it was not registered."""
        if name not in self._commands:
            return False
        del self._commands[name]
        self._revision += 1
        logger.debug(f"Unregistered command: {name}")
        self._notify(RegistryEvent(UNREGISTER, name))
        return True

    def get(self, name: str) -> Optional[CommandDefinition]:
        return self._commands.get(name)

    @property
    def revision(self) -> int:
        """Incremented on every mutation."""
        return self._revision

    def snapshot(self) -> dict[str, CommandDefinition]:
        """Copy of the full table for one-shot consumers."""
        return dict(self._commands)

    def __contains__(self, name) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def _notify(self, event: RegistryEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Registry listener failed on {event.kind} '{event.name}': {e}", exc_info=True)

"""Application-command catalog: publishes the registry as Discord slash commands."""

import asyncio
import logging
from typing import Callable, Optional

from .registry import REGISTER, CommandDefinition, CommandRegistry, RegistryEvent

logger = logging.getLogger("cmc_discord.commands.slash")

SUPPORTED_LOCALES = (
    "da", "de", "en-GB", "en-US", "es-ES", "fr", "hr", "it", "lt", "hu",
    "nl", "no", "pl", "pt-BR", "ro", "fi", "sv-SE", "vi", "tr", "cs",
    "el", "bg", "ru", "uk", "hi", "th", "zh-CN", "ja", "zh-TW", "ko",
)

ATTACHMENT_OPTION = "attachment"

# Must cover every supported locale
ATTACHMENT_LOCALIZATIONS = {
    "en-US": "Attachment",
    "da": "Vedhæftet fil",
    "de": "Anhang",
    "en-GB": "Attachment",
    "es-ES": "Archivo adjunto",
    "fr": "Pièce jointe",
    "hr": "Prilog",
    "it": "Allegato",
    "lt": "Priedas",
    "hu": "Csatolmány",
    "nl": "Bijlage",
    "pl": "Załącznik",
    "pt-BR": "Anexo",
    "ro": "Atașament",
    "ru": "Вложение",
    "tr": "Ek",
    "zh-CN": "附件",
    "zh-TW": "附件",
    "ja": "添付",
    "ko": "첨부파일",
    "vi": "Tệp đính kèm",
    "th": "ไฟล์แนบ",
    "sv-SE": "Bifogat fil",
    "bg": "Приложение",
    "cs": "Příloha",
    "fi": "Liite",
    "el": "Συνημμένο",
    "hi": "संलग्नक",
    "no": "Vedlegg",
    "uk": "Додаток",
}

# Discord API enums
CHAT_INPUT = 1
OPTION_STRING = 3
OPTION_ATTACHMENT = 11


def _localizations(text: dict[str, str]) -> dict[str, str]:
    return {lang: desc for lang, desc in text.items() if lang in SUPPORTED_LOCALES}


def build_slash_command(definition: CommandDefinition) -> dict:
    """Application-command JSON for one registry entry."""
    options = []
    for arg in definition.args:
        if arg.name == ATTACHMENT_OPTION:
            logger.warning(f"/{definition.name}: argument '{arg.name}' clashes with the attachment option, not published")
            continue
        options.append({
            "type": OPTION_STRING,
            "name": arg.name,
            "description": arg.description.get("fallback", ""),
            "description_localizations": _localizations(arg.description),
            "required": not arg.optional,
        })

    options.append({
        "type": OPTION_ATTACHMENT,
        "name": ATTACHMENT_OPTION,
        "description": "Attachment",
        "description_localizations": dict(ATTACHMENT_LOCALIZATIONS),
        "required": False,
    })

    return {
        "type": CHAT_INPUT,
        "name": definition.name,
        "description": definition.description.get("fallback", ""),
        "description_localizations": _localizations(definition.description),
        "options": options,
    }


class SlashCommandPublisher:
    """Keeps one application's global commands in sync with the registry.

    Args:
        http: discord.py HTTPClient of a logged-in client.
        application_id: Discord application to publish under.
        registry: Source of truth for the catalog.
    """

    def __init__(self, http, application_id: str, registry: CommandRegistry):
        self.http = http
        self.application_id = application_id
        self.registry = registry
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: set[asyncio.Task] = set()

    async def publish_all(self):
        """Bulk-overwrite the application's commands with the registry snapshot.

        Publishes again if the registry changed while the request was in
        flight, so the last overwrite always matches the registry.
        """
        while True:
            revision = self.registry.revision
            payload = [build_slash_command(d) for d in self.registry.snapshot().values()]
            await self.http.bulk_upsert_global_commands(self.application_id, payload)
            if self.registry.revision == revision:
                break
            logger.info("Command registry changed during publication, publishing again.")
        logger.info(f"Published {len(payload)} slash commands for application {self.application_id}.")

    async def publish_one(self, definition: CommandDefinition):
        await self.http.upsert_global_command(self.application_id, build_slash_command(definition))
        logger.debug(f"Published slash command /{definition.name}.")

    def attach(self):
        """Follow registry changes until detach()."""
        if self._unsubscribe is None:
            self._unsubscribe = self.registry.subscribe(self._on_registry_event)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._tasks):
            task.cancel()

    def _on_registry_event(self, event: RegistryEvent):
        if event.kind == REGISTER:
            coro = self.publish_one(event.definition)
        else:
            # No single-command delete by name; overwrite with what is left
            coro = self.publish_all()
        task = asyncio.ensure_future(self._guarded(coro, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded(self, coro, event: RegistryEvent):
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to publish slash command change ({event.kind} /{event.name}): {e}")

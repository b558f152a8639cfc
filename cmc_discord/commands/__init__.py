"""Command catalog: argument specs, registry, discovery handshake and publication."""

from .args import ArgumentSpec, parse_args, FALLBACK_ARGUMENT
from .registry import CommandDefinition, CommandRegistry, RegistryEvent
from .handshake import ReadinessBarrier, RegistrationHandshake

__all__ = [
    "ArgumentSpec",
    "parse_args",
    "FALLBACK_ARGUMENT",
    "CommandDefinition",
    "CommandRegistry",
    "RegistryEvent",
    "ReadinessBarrier",
    "RegistrationHandshake",
]

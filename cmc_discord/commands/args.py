"""Compact argument-spec parser.

Command modules describe their arguments as a per-language string::

    {"fallback": "<user> [reason]", "de": "<Benutzer> [Grund]"}

``<text>`` is a required argument, ``[text]`` an optional one, and the
text is the argument's description in that language. The Nth token of
every language describes the Nth argument.
"""

from dataclasses import dataclass, field
from typing import Optional

UNKNOWN_DESCRIPTION = "FALLBACK_UNKNOWN"

_CLOSERS = {"<": ">", "[": "]"}


@dataclass
class ArgumentSpec:
    name: str
    description: dict[str, str] = field(default_factory=dict)
    optional: bool = False

    def as_wire(self) -> list:
        """``[name, description, optional]`` as the bus carries it."""
        return [self.name, dict(self.description), self.optional]


FALLBACK_ARGUMENT = ArgumentSpec(name="arg", description={"fallback": "Input"}, optional=False)


def _first_token(text: str) -> Optional[tuple[int, int]]:
    """Span of the leftmost ``<...>`` or ``[...]`` token with a non-empty body."""
    for start, char in enumerate(text):
        closer = _CLOSERS.get(char)
        if closer is None:
            continue
        end = text.find(closer, start + 1)
        # "<>" and "[]" are not tokens; the scan moves on to the next opener
        if end > start + 1:
            return start, end + 1
    return None


def tokenize(text: str) -> list[tuple[str, bool]]:
    """Extract ``(description, optional)`` tokens in positional order.

    Each round takes the leftmost token and cuts it out of the string
    before scanning again, so text on both sides of a removed token can
    join into a new token.
    """
    tokens = []
    while True:
        span = _first_token(text)
        if span is None:
            return tokens
        start, end = span
        token = text[start:end]
        tokens.append((token[1:-1], token.startswith("[")))
        text = text[:start] + text[end:]


def parse_args(spec: dict[str, str], names: Optional[list[str]] = None) -> list[ArgumentSpec]:
    """Turn a localized argument spec into an ordered argument list.

    Args:
        spec: Language tag (or "fallback") -> compact spec string.
        names: Optional explicit argument names. When given, the number of
            parsed arguments must match it, otherwise a single required
            ``arg`` argument is returned instead.

    Returns:
        Ordered list of ArgumentSpec. Never raises; malformed input
        degrades to the single fallback argument.
    """
    if not isinstance(spec, dict) or (names is not None and not isinstance(names, list)):
        return [_fallback()]

    args: list[ArgumentSpec] = []
    for language, text in spec.items():
        if not isinstance(text, str):
            return [_fallback()]

        for index, (description, optional) in enumerate(tokenize(text)):
            if index < len(args):
                args[index].description[language] = description
                continue

            name = f"a{index + 1}"
            if names is not None and index < len(names):
                name = str(names[index])
            args.append(ArgumentSpec(
                name=name,
                description={"fallback": UNKNOWN_DESCRIPTION, language: description},
                optional=optional,
            ))

    if names is not None and len(args) != len(names):
        return [_fallback()]

    return args


def _fallback() -> ArgumentSpec:
    return ArgumentSpec(
        name=FALLBACK_ARGUMENT.name,
        description=dict(FALLBACK_ARGUMENT.description),
        optional=FALLBACK_ARGUMENT.optional,
    )

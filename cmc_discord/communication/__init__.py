"""Communication: inbound normalization, outbound routing and boundary errors."""

from .errors import AdapterError, classify_error
from .inbound import InboundNormalizer, find_mention
from .outbound import ContinuationTable, ReplyRouter

__all__ = [
    "AdapterError",
    "classify_error",
    "InboundNormalizer",
    "find_mention",
    "ContinuationTable",
    "ReplyRouter",
]

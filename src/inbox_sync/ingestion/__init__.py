"""Ingestion pipeline components."""

from .connector import MailboxConnector, SessionFactory
from .normalizer import MessageNormalizer, NormalizationError

__all__ = [
    "MailboxConnector",
    "MessageNormalizer",
    "NormalizationError",
    "SessionFactory",
]

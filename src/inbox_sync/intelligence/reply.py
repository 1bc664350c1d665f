"""Reply suggestions grounded on a small set of context snippets."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from inbox_sync.core.config import AppSettings, ReplySettings
from inbox_sync.core.models import ContextSnippet, Message, SuggestedReply
from inbox_sync.storage.snippets import JsonSnippetStore

from .llm import LLMClient, LLMError, OllamaClient
from .prompts import build_reply_prompt

LOGGER = logging.getLogger(__name__)

TOP_K = 3
LLM_CONFIDENCE = 0.85
RULE_CONFIDENCE = 0.5


def default_snippets(settings: ReplySettings) -> list[ContextSnippet]:
    """Return the seed snippets written at startup."""
    return [
        ContextSnippet(id="product_context", content=settings.product_context),
        ContextSnippet(
            id="meeting_link",
            content=f"For scheduling meetings, use this link: {settings.booking_link}",
        ),
        ContextSnippet(
            id="availability",
            content=(
                "I am available for meetings and discussions. Please feel free "
                "to book a time slot that works for you."
            ),
        ),
        ContextSnippet(
            id="interest_response",
            content=(
                "Thank you for your interest! I would be happy to discuss this "
                "opportunity further."
            ),
        ),
        ContextSnippet(
            id="interview_ready",
            content=(
                "Thank you for considering my profile. I am available for "
                "interviews and technical discussions."
            ),
        ),
    ]


def load_snippets(
    store: JsonSnippetStore, settings: ReplySettings
) -> list[ContextSnippet]:
    """Seed or reload snippets according to ``settings.reset_on_startup``."""
    if not settings.reset_on_startup and store.exists():
        snippets = store.load()
        LOGGER.info("Loaded %s context snippet(s) from %s", len(snippets), store.path)
        return snippets
    snippets = default_snippets(settings)
    store.save(snippets)
    LOGGER.info("Seeded %s default context snippet(s)", len(snippets))
    return snippets


def tokenize(text: str) -> set[str]:
    """Split ``text`` into lower-cased whitespace-delimited words."""
    return set(text.lower().split())


def similarity(left: str, right: str) -> float:
    """Token overlap divided by the larger token set."""
    left_tokens = tokenize(left)
    right_tokens = tokenize(right)
    largest = max(len(left_tokens), len(right_tokens))
    if largest == 0:
        return 0.0
    return len(left_tokens & right_tokens) / largest


class ReplyRetrievalEngine:
    """Score stored snippets against a message and compose a reply.

    When an LLM client is configured the top snippets are handed to it as
    context; any failure or empty answer falls back to keyword templates.
    :meth:`suggest_reply` never raises.
    """

    def __init__(
        self,
        snippets: Sequence[ContextSnippet],
        *,
        llm_client: LLMClient | None = None,
        store: JsonSnippetStore | None = None,
        booking_link: str = "https://cal.com/example",
        top_k: int = TOP_K,
    ) -> None:
        self._snippets: tuple[ContextSnippet, ...] = tuple(snippets)
        self._llm_client = llm_client
        self._store = store
        self._booking_link = booking_link
        self._top_k = top_k

    @property
    def snippets(self) -> tuple[ContextSnippet, ...]:
        """Snippets in insertion order."""
        return self._snippets

    def add_snippet(self, snippet_id: str, content: str) -> ContextSnippet:
        """Append a snippet and persist the collection when a store is set."""
        snippet = ContextSnippet(id=snippet_id, content=content)
        self._snippets = (*self._snippets, snippet)
        if self._store is not None:
            self._store.save(self._snippets)
        return snippet

    def score(self, message: Message) -> list[tuple[ContextSnippet, float]]:
        """Return every snippet paired with its similarity to ``message``."""
        text = _message_text(message)
        return [(item, similarity(text, item.content)) for item in self._snippets]

    def retrieve(self, message: Message) -> tuple[ContextSnippet, ...]:
        """Return the best ``top_k`` snippets; ties keep insertion order."""
        scored = [(value, item) for item, value in self.score(message)]
        ranked = sorted(scored, key=lambda pair: -pair[0])
        return tuple(item for _, item in ranked[: self._top_k])

    def suggest_reply(self, message: Message) -> SuggestedReply:
        """Return a non-empty reply suggestion for ``message``."""
        try:
            context = self.retrieve(message)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Context retrieval failed for message %s", message.id)
            context = ()

        if self._llm_client is not None:
            reply = self._generate_with_llm(message, context)
            if reply:
                return SuggestedReply(
                    message_id=message.id,
                    reply=reply,
                    context=context,
                    provider=self._llm_client.provider_id,
                    used_fallback=False,
                    confidence=LLM_CONFIDENCE,
                )

        return SuggestedReply(
            message_id=message.id,
            reply=rule_based_reply(message, self._booking_link),
            context=context,
            provider="deterministic",
            used_fallback=True,
            confidence=RULE_CONFIDENCE,
        )

    def _generate_with_llm(
        self, message: Message, context: Sequence[ContextSnippet]
    ) -> str | None:
        assert self._llm_client is not None
        prompt = build_reply_prompt(message, context)
        try:
            output = self._llm_client.generate(prompt)
        except LLMError as exc:
            LOGGER.warning("LLM reply failed for message %s: %s", message.id, exc)
            return None
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Unexpected LLM failure for message %s", message.id)
            return None
        cleaned = output.strip() if isinstance(output, str) else ""
        return cleaned or None


def build_reply_engine(settings: AppSettings) -> ReplyRetrievalEngine:
    """Seed the snippet store and wire the optional LLM client."""
    store = JsonSnippetStore(settings.reply.context_path)
    snippets = load_snippets(store, settings.reply)
    llm_client = OllamaClient(settings.llm) if settings.llm.enabled else None
    return ReplyRetrievalEngine(
        snippets,
        llm_client=llm_client,
        store=store,
        booking_link=settings.reply.booking_link,
    )


def rule_based_reply(message: Message, booking_link: str) -> str:
    """Pick a canned reply by keyword, checking the most specific intent first."""
    text = _message_text(message).lower()

    if _mentions(text, ("interview", "schedule", "available", "when are you free")):
        return (
            "Thank you for reaching out! I'm very interested in discussing this "
            "opportunity further. I'm available for an interview at your "
            "convenience. Please feel free to book a time slot that works best "
            f"for you: {booking_link}\n\n"
            "Looking forward to speaking with you!\n\nBest regards"
        )

    if _mentions(text, ("shortlisted", "selected", "congratulations")):
        return (
            "Thank you for considering my profile! I'm excited about this "
            "opportunity and would be happy to proceed with the next steps.\n\n"
            "I'm available for an interview or discussion at your convenience. "
            f"You can book a time slot here: {booking_link}\n\n"
            "Looking forward to connecting!\n\nBest regards"
        )

    if _mentions(text, ("interested", "opportunity", "position")):
        return (
            "Thank you for your interest! I would be delighted to discuss this "
            "opportunity in more detail.\n\n"
            "I'm available for a call or meeting. Please feel free to schedule a "
            f"time that works for you: {booking_link}\n\nBest regards"
        )

    if _mentions(text, ("technical", "skills", "experience")):
        return (
            "Thank you for your email! I'd be happy to discuss my technical "
            "background and experience in detail.\n\n"
            "I'm available for a technical discussion at your convenience. You "
            f"can schedule a meeting here: {booking_link}\n\n"
            "Looking forward to our conversation!\n\nBest regards"
        )

    return (
        "Thank you for reaching out! I appreciate your interest and would be "
        "happy to discuss this further.\n\n"
        "I'm available for a call or meeting. Please schedule a time that works "
        f"for you: {booking_link}\n\nBest regards"
    )


def _mentions(text: str, needles: Sequence[str]) -> bool:
    return any(needle in text for needle in needles)


def _message_text(message: Message) -> str:
    return f"{message.subject} {message.body}"


__all__ = [
    "ReplyRetrievalEngine",
    "build_reply_engine",
    "default_snippets",
    "load_snippets",
    "rule_based_reply",
    "similarity",
    "tokenize",
]

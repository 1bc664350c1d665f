"""Rule-based categorisation service for messages."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from inbox_sync.core.interfaces import Categorizer
from inbox_sync.core.models import Category, Message

CategoryPredicate = Callable[[Message, str], bool]

OUT_OF_OFFICE_PHRASES: tuple[str, ...] = (
    "out of office",
    "out of the office",
    "ooo",
    "automatic reply",
    "auto reply",
    "away from office",
    "on vacation",
    "on leave",
    "currently unavailable",
    "away from my desk",
    "not in the office",
    "limited access to email",
)

SPAM_PHRASES: tuple[str, ...] = (
    "congratulations you won",
    "claim your prize",
    "click here now",
    "limited time offer",
    "act now",
    "free money",
    "nigerian prince",
    "verify your account",
    "suspended account",
    "unusual activity",
    "confirm your password",
    "you have been selected",
    "winner",
    "lottery",
    "casino",
    "viagra",
    "pharmacy",
    "weight loss",
    "make money fast",
    "work from home",
    "no credit check",
    "refinance",
)

MEETING_BOOKED_PHRASES: tuple[str, ...] = (
    "meeting confirmed",
    "meeting scheduled",
    "meeting booked",
    "interview scheduled",
    "calendar invitation",
    "event invitation",
    "has invited you",
    "meeting invite",
    "scheduled a meeting",
    "accepted your meeting",
    "meeting accepted",
    "zoom meeting",
    "google meet",
    "teams meeting",
    "calendar event",
    "appointment confirmed",
    "scheduled for",
    "meeting on",
    "see you at",
)

INTERESTED_PHRASES: tuple[str, ...] = (
    "interested",
    "would like to know more",
    "tell me more",
    "sounds interesting",
    "sounds good",
    "looks promising",
    "let's discuss",
    "let's talk",
    "let's schedule",
    "can we talk",
    "would like to discuss",
    "want to learn more",
    "please share more",
    "send me more information",
    "more details",
    "please call",
    "looking forward",
    "excited to",
    "great opportunity",
    "resume shortlisted",
    "profile shortlisted",
    "congratulations",
    "move forward",
    "next steps",
    "interview",
    "technical round",
    "when are you available",
    "available for a call",
    "schedule a call",
    "let's connect",
)

NOT_INTERESTED_PHRASES: tuple[str, ...] = (
    "not interested",
    "no longer interested",
    "not a good fit",
    "not the right fit",
    "pass on this",
    "decline",
    "not at this time",
    "maybe later",
    "not right now",
    "thank you for your interest",
    "we have decided",
    "went with another",
    "selected another candidate",
    "position has been filled",
    "no thank",
    "unsubscribe",
    "remove me",
    "stop sending",
    "not hiring",
    "budget constraints",
    "unfortunately",
    "regret to inform",
    "unable to proceed",
)

CAPS_RATIO_THRESHOLD = 0.5
CAPS_MIN_SUBJECT_LENGTH = 10


@dataclass(frozen=True)
class _CategoryRule:
    category: Category
    keywords: tuple[str, ...] = ()
    predicate: CategoryPredicate | None = None


def _shouting_from_suspicious_sender(message: Message, _text: str) -> bool:
    """Flag all-caps subjects that come from no-reply or malformed senders."""
    subject = message.subject
    if len(subject) <= CAPS_MIN_SUBJECT_LENGTH:
        return False
    caps_ratio = sum(1 for ch in subject if "A" <= ch <= "Z") / len(subject)
    if caps_ratio <= CAPS_RATIO_THRESHOLD:
        return False
    sender = message.sender
    return "noreply" in sender or "no-reply" in sender or "@" not in sender


DEFAULT_RULES: tuple[_CategoryRule, ...] = (
    _CategoryRule(Category.OUT_OF_OFFICE, keywords=OUT_OF_OFFICE_PHRASES),
    _CategoryRule(
        Category.SPAM,
        keywords=SPAM_PHRASES,
        predicate=_shouting_from_suspicious_sender,
    ),
    _CategoryRule(Category.MEETING_BOOKED, keywords=MEETING_BOOKED_PHRASES),
    _CategoryRule(Category.INTERESTED, keywords=INTERESTED_PHRASES),
    _CategoryRule(Category.NOT_INTERESTED, keywords=NOT_INTERESTED_PHRASES),
)


class RuleBasedCategorizer(Categorizer):
    """Assign a single category by evaluating rules in order.

    The first matching rule wins, so rule order doubles as the tie-break:
    out-of-office beats spam, spam beats meeting confirmations, and so on.
    Messages matching nothing are :attr:`Category.UNCATEGORIZED`.
    """

    def __init__(self, rules: Sequence[_CategoryRule] | None = None) -> None:
        self._rules: tuple[_CategoryRule, ...] = (
            tuple(rules) if rules is not None else DEFAULT_RULES
        )

    def categorize(self, message: Message) -> Category:
        """Return the category for ``message`` based on subject and body."""
        haystack = _build_haystack(message)
        for rule in self._rules:
            if _matches_rule(rule, message, haystack):
                return rule.category
        return Category.UNCATEGORIZED


def _build_haystack(message: Message) -> str:
    return f"{message.subject} {message.body}".lower()


def _matches_rule(rule: _CategoryRule, message: Message, haystack: str) -> bool:
    if rule.keywords and _contains_keyword(rule.keywords, haystack):
        return True
    if rule.predicate is not None:
        return rule.predicate(message, haystack)
    return False


def _contains_keyword(keywords: Iterable[str], haystack: str) -> bool:
    for keyword in keywords:
        if keyword in haystack:
            return True
    return False


__all__ = ["DEFAULT_RULES", "RuleBasedCategorizer"]

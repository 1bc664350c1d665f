"""Prompt templates for LLM-driven reply suggestions."""

from __future__ import annotations

from collections.abc import Sequence
from textwrap import dedent

from inbox_sync.core.models import ContextSnippet, Message


def build_reply_prompt(message: Message, context: Sequence[ContextSnippet]) -> str:
    """Compose a prompt asking for a short professional reply."""
    sender = message.sender or "(unknown sender)"
    subject = message.subject or "(no subject)"
    # Snippets are joined before dedent so multi-line content keeps its shape.
    context_block = "\n\n".join(snippet.content for snippet in context) or "(none)"

    prompt = dedent(
        """
        You are an AI assistant helping to draft professional email replies.

        Context about the user:
        {context}

        Email received:
        From: {sender}
        Subject: {subject}
        Body: {body}

        Generate a professional, concise reply to this email. The reply should:
        1. Be friendly and professional
        2. Address the main points in the email
        3. Include relevant information from the context (like meeting links if discussing scheduling)
        4. Be concise (2-4 sentences)
        5. End with a clear call-to-action if needed

        Reply:
        """
    ).strip()

    return prompt.format(
        context=context_block,
        sender=sender,
        subject=subject,
        body=message.body,
    )


__all__ = ["build_reply_prompt"]

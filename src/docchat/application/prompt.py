"""Prompt composition for grounded chat turns."""

from __future__ import annotations

from collections.abc import Sequence

from docchat.domain.models import ChatTurn, PromptMessage, ResponseStyle, RetrievedPassage

DEFAULT_HISTORY_WINDOW = 6

SYSTEM_GUIDELINE = """\
You are an AI assistant with broad knowledge. When an additional CONTEXT \
section is supplied, use it to improve accuracy, resolve ambiguity, or cite \
sources by their [index]. If the context contradicts general knowledge, \
follow the context. If the context does not relate to the question, rely on \
your own knowledge.\
"""

CONTEXT_SEPARATOR = "\n---\n"


def style_directive(style: ResponseStyle) -> str:
    return f"Respond in a {style.value} style."


def format_context(passages: Sequence[RetrievedPassage]) -> str:
    """Render passages as ``[1] text`` blocks separated by ``---``."""
    return CONTEXT_SEPARATOR.join(
        f"[{i}] {p.page_content}" for i, p in enumerate(passages, 1)
    )


def compose(
    system_guideline: str,
    style: ResponseStyle,
    context: Sequence[RetrievedPassage],
    history: Sequence[ChatTurn],
    new_message: str,
    images: Sequence[str] = (),
    *,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> list[PromptMessage]:
    """Build the ordered message list for one model call.

    Order is fixed: guideline + style, optional context, the most recent
    *history_window* live turns in chronological order, then the new user
    message. Older turns are dropped, not summarised.
    """
    messages = [
        PromptMessage(role="system", content=f"{system_guideline} {style_directive(style)}"),
    ]

    if context:
        messages.append(PromptMessage(role="system", content=f"Context:\n{format_context(context)}"))

    live = [t for t in history if not t.is_deleted]
    recent = live[-history_window:] if history_window > 0 else []
    messages.extend(PromptMessage(role=t.role, content=t.content) for t in recent)

    messages.append(PromptMessage(role="user", content=new_message, images=list(images)))
    return messages

"""Plain-text rendering of a channel's recent messages for agents to read."""

from typing import Iterable

from yaklog.schemas import MessageResponse


def render_context(channel: str, messages: Iterable[MessageResponse]) -> str:
    """
    Render messages as a line-oriented dump.

    Each message is a block opened by "---"; the body is written verbatim
    between "body<<EOF" and "EOF" lines so multi-line bodies survive.
    """
    messages = list(messages)
    lines = [f"channel={channel}", f"count={len(messages)}"]
    for message in messages:
        lines.append("---")
        lines.append(f"id={message.id}")
        lines.append(f"time={message.created_at}")
        lines.append(f"sender={message.sender}")
        lines.append("body<<EOF")
        lines.append(message.body)
        lines.append("EOF")
    return "\n".join(lines) + "\n"

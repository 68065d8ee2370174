"""Parser for conversation log files.

A log file is a UTF-8 JSON document:

    {"conversation_id": "abc", "messages": [{"role": "user", "content": "..."}]}

`conversation_id` is optional; `messages` is required. Extra fields are
ignored.
"""

import json
from pathlib import Path
from typing import Any

from ..models import ConversationLog, Message

CHARS_PER_TOKEN = 4


class MalformedLog(ValueError):
    """Raised when a log file is not a well-formed conversation document."""

    pass


def _parse_message(index: int, item: Any) -> Message:
    if not isinstance(item, dict):
        raise MalformedLog(f"Message {index} is not an object")

    role = item.get("role")
    content = item.get("content")
    if not isinstance(role, str):
        raise MalformedLog(f"Message {index} has no string 'role'")
    if not isinstance(content, str):
        raise MalformedLog(f"Message {index} has no string 'content'")

    return Message(role=role, content=content)


def parse_conversation_log(raw: str | bytes) -> ConversationLog:
    """Parse the text of a conversation log.

    Args:
        raw: File contents, as text or UTF-8 bytes.

    Returns:
        The parsed ConversationLog.

    Raises:
        MalformedLog: If the document is not valid JSON or required fields
            are missing or mistyped.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedLog(f"Log is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedLog(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedLog("Log must be a JSON object")

    if "messages" not in data:
        raise MalformedLog("Missing required field 'messages'")
    items = data["messages"]
    if not isinstance(items, list):
        raise MalformedLog("'messages' must be a list")

    conversation_id = data.get("conversation_id")
    if conversation_id is not None and not isinstance(conversation_id, str):
        raise MalformedLog("'conversation_id' must be a string")

    messages = tuple(_parse_message(i, item) for i, item in enumerate(items))
    return ConversationLog(messages=messages, conversation_id=conversation_id)


def read_conversation_log(path: Path) -> ConversationLog:
    """Read and parse a conversation log file.

    Raises:
        OSError: If the file cannot be read.
        MalformedLog: If its contents are malformed.
    """
    return parse_conversation_log(Path(path).read_bytes())


def estimate_tokens(log: ConversationLog) -> int:
    """Rough token estimate: total content characters divided by four."""
    total_chars = sum(len(message.content) for message in log.messages)
    return total_chars // CHARS_PER_TOKEN

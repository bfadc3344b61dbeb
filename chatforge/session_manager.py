"""Session store, lifecycle and history management."""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chatforge.errors import FormatError, InvalidSessionId, SessionNotFound
from chatforge.globals import SESSIONS_FILE

logger = logging.getLogger(__name__)

ROLES = ("system", "user", "assistant")

# Auto-derived titles keep this many characters of the first user message
TITLE_PREVIEW_LENGTH = 20


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: str) -> datetime:
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


@dataclass(frozen=True)
class Message:
    """A single conversation turn. Immutable once appended."""

    role: str
    content: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        role = data["role"]
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("Message content must be a string")
        return cls(role, content, _parse_time(data["timestamp"]))


@dataclass
class Session:
    """One persisted conversation with an ordered message history."""

    id: str
    title: str
    created_at: datetime
    last_accessed: datetime
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def new(cls, title: str, system_prompt: str) -> "Session":
        now = _now()
        return cls(
            id=str(uuid.uuid4()),
            title=title,
            created_at=now,
            last_accessed=now,
            messages=[Message("system", system_prompt, now)],
        )

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def touch(self):
        self.last_accessed = max(_now(), self.last_accessed)

    def add_message(self, role: str, content: str) -> Message:
        """Appends a message, auto-deriving the title from the first user turn"""
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        stamp = _now()
        # Timestamps never go backwards within a session, even if the clock does
        if self.messages and stamp < self.messages[-1].timestamp:
            stamp = self.messages[-1].timestamp
        message = Message(role, content, stamp)
        self.messages.append(message)
        self.touch()

        if not self.title and role == "user":
            if len(content) > TITLE_PREVIEW_LENGTH:
                self.title = content[:TITLE_PREVIEW_LENGTH] + "..."
            else:
                self.title = content
        return message

    def rename(self, title: str):
        self.title = title
        self.touch()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        messages = data["messages"]
        if not isinstance(messages, list):
            raise TypeError("'messages' must be a list")
        title = data["title"]
        if not isinstance(title, str):
            raise TypeError("'title' must be a string")
        return cls(
            id=str(data["id"]),
            title=title,
            created_at=_parse_time(data["created_at"]),
            last_accessed=_parse_time(data["last_accessed"]),
            messages=[Message.from_dict(m) for m in messages],
        )


def _sessions_from_document(document) -> dict[str, Session]:
    """Validates a whole-store document and builds the mapping. Raises FormatError."""
    if not isinstance(document, dict):
        raise FormatError("Session document must be a JSON object keyed by session id.")
    sessions: dict[str, Session] = {}
    for key, value in document.items():
        if not isinstance(value, dict):
            raise FormatError(f"Session '{key}' is not a JSON object.")
        try:
            session = Session.from_dict(value)
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(f"Session '{key}' is malformed: {e}") from e
        if session.id != key:
            raise FormatError(f"Session key '{key}' does not match its id '{session.id}'.")
        sessions[key] = session
    return sessions


class SessionManager:
    """Owns the session mapping, the active pointer and the eviction policy"""

    def __init__(self, config, sessions_file: str = SESSIONS_FILE):
        self.config = config
        self.sessions_file = sessions_file
        self.sessions: dict[str, Session] = {}
        self.active_id: str | None = None
        self.encoder = None
        self.token_cache: dict[int, int] = {}

    # <~~LIFECYCLE~~>
    def create(self, title: str = "") -> str:
        """Creates a session, makes it active and returns its id"""
        if len(self.sessions) >= self.config.max_sessions:
            # Make room so the new session keeps the store within the limit
            self.cleanup(limit=max(self.config.max_sessions - 1, 0))
        session = Session.new(title, self.config.system_prompt)
        self.sessions[session.id] = session
        self.active_id = session.id
        return session.id

    def switch(self, session_id: str):
        """Sets the active session. Raises SessionNotFound, leaving state unchanged."""
        session = self.get(session_id)
        self.active_id = session_id
        session.touch()

    def rename(self, session_id: str, title: str):
        self.get(session_id).rename(title)

    def remove(self, session_id: str):
        """Deletes a session, clearing the active pointer first if needed"""
        if session_id not in self.sessions:
            raise SessionNotFound(session_id)
        if self.active_id == session_id:
            self.active_id = None
        del self.sessions[session_id]

    def cleanup(self, limit: int | None = None) -> list[str]:
        """Evicts least-recently-accessed, non-active sessions until within limit."""
        if limit is None:
            limit = self.config.max_sessions
        evicted: list[str] = []
        if len(self.sessions) <= limit:
            return evicted

        # sorted() is stable, so equal timestamps fall back to insertion order
        candidates = sorted(self.sessions.values(), key=lambda s: s.last_accessed)
        for session in candidates:
            if len(self.sessions) <= limit:
                break
            if session.id == self.active_id:
                continue
            del self.sessions[session.id]
            evicted.append(session.id)
        if evicted:
            logger.info("Evicted %d session(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    # <~~LOOKUP~~>
    def get(self, session_id: str) -> Session:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None

    def get_active(self) -> Session | None:
        if self.active_id is None:
            return None
        return self.sessions.get(self.active_id)

    @property
    def active_session(self) -> Session:
        """The active session. Raises InvalidSessionId when none is set."""
        session = self.get_active()
        if session is None:
            raise InvalidSessionId()
        return session

    def resolve_id(self, prefix: str) -> str:
        """Resolves a full id or a unique id prefix (as shown by the short listing)"""
        if prefix in self.sessions:
            return prefix
        matches = [sid for sid in self.sessions if prefix and sid.startswith(prefix)]
        if len(matches) != 1:
            raise SessionNotFound(prefix)
        return matches[0]

    def list_sessions(self) -> list[Session]:
        """Sessions sorted by last access, most recent first"""
        return sorted(self.sessions.values(), key=lambda s: s.last_accessed, reverse=True)

    # <~~HISTORY~~>
    def append_message(self, role: str, content: str) -> Message:
        """Append content to the active conversation"""
        return self.active_session.add_message(role, content)

    def correct_history(self):
        """Drops a dangling user turn if the API connection was interrupted"""
        session = self.get_active()
        if session and len(session.messages) > 1 and session.messages[-1].role == "user":
            session.messages.pop()

    def last_assistant_message(self, session_id: str | None = None) -> str | None:
        """Returns the last assistant message of a session (active by default)"""
        session = self.get(session_id) if session_id else self.active_session
        for msg in reversed(session.messages):
            if msg.role == "assistant":
                return msg.content
        return None

    def request_messages(self) -> list[dict]:
        """The active history in the wire format of the completion request"""
        return [m.to_dict() for m in self.active_session.messages]

    def count_turns(self) -> int:
        """Calculates and returns the turn number"""
        session = self.get_active()
        if not session:
            return 0
        return sum(1 for m in session.messages if m.role == "user")

    def count_tokens(self) -> int:
        """Counts and caches tokens for the active session."""
        session = self.get_active()
        if not session:
            return 0
        total = 0
        for msg in session.messages:
            text_hash = hash(msg.content)
            cached = self.token_cache.get(text_hash)
            if cached is None:
                cached = self.encode(msg.content)
                self.token_cache[text_hash] = cached
            total += cached
        return total

    def encode(self, text: str) -> int:
        """Converts a string to tokens"""
        try:
            if self.encoder is None:
                import tiktoken

                self.encoder = tiktoken.get_encoding("o200k_base")
            count = len(self.encoder.encode(text))
        except Exception as e:
            logger.warning(f"Token counting unavailable: {e}")
            count = 0
        return count

    # <~~SERIALIZATION~~>
    def serialize(self) -> bytes:
        """Whole-store JSON document"""
        document = {sid: s.to_dict() for sid, s in self.sessions.items()}
        return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")

    def deserialize(self, data: bytes | str):
        """Replaces the whole mapping. Raises FormatError, keeping prior state."""
        try:
            document = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FormatError(f"Invalid session JSON: {e}") from e
        self.sessions = _sessions_from_document(document)
        if self.active_id not in self.sessions:
            self.active_id = None
        self.token_cache = {}

    def save_to_disk(self, filepath: str | None = None):
        """Overwrites the session file with the whole store"""
        filepath = filepath or self.sessions_file
        with open(filepath, "wb") as f:
            f.write(self.serialize())

    def load_from_disk(self, filepath: str | None = None):
        """Replaces the store with the session file's content"""
        filepath = filepath or self.sessions_file
        with open(filepath, "rb") as f:
            self.deserialize(f.read())

    # <~~EXPORT & IMPORT~~>
    def _json_helper(self, file_name: str) -> str:
        """JSON extension helper"""
        file_name = os.path.abspath(os.path.expanduser(file_name))
        if not file_name.endswith(".json"):
            file_name += ".json"
        return file_name

    def export_all(self, filepath: str) -> str:
        filepath = self._json_helper(filepath)
        self.save_to_disk(filepath)
        return filepath

    def export_session(self, filepath: str, session_id: str | None = None) -> str:
        """Writes one session (the active one by default) as a standalone document"""
        session = self.get(session_id) if session_id else self.active_session
        filepath = self._json_helper(filepath)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, indent=2, ensure_ascii=False)
        return filepath

    def import_file(self, filepath: str) -> int:
        """Merges a whole-store or single-session document by id, then evicts down to max_sessions."""
        with open(os.path.expanduser(filepath), "rb") as f:
            try:
                document = json.loads(f.read())
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise FormatError(f"Invalid session JSON: {e}") from e

        if isinstance(document, dict) and "messages" in document and "id" in document:
            document = {str(document["id"]): document}
        imported = _sessions_from_document(document)
        self.sessions.update(imported)
        self.cleanup()
        return len(imported)

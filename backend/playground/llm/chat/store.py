"""SessionStore owns the chat session set and keeps it durable."""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from playground.db.database import close_database, database_path, init_database
from playground.db.local_storage import LocalStorage
from playground.db.secrets import SecretsError, decrypt_secret, encrypt_secret
from playground.errors import PersistenceError
from playground.llm.chat.catalog import default_model
from playground.llm.chat.models import (
    DEFAULT_TITLE,
    ChatRole,
    Message,
    ModelConfig,
    PersistedState,
    Session,
)

logger = logging.getLogger(__name__)

STORAGE_KEY = "playground_chats"
TITLE_MAX_LENGTH = 30
TITLE_ELLIPSIS = "..."

# Fields a caller may change through update_session
UPDATABLE_FIELDS = frozenset(
    {"title", "description", "system_prompt", "model", "config", "credential"}
)

# Fields a new session inherits when duplicated
INHERITED_FIELDS = ("description", "system_prompt", "model", "config", "credential")

# Singleton store instance
_store: "SessionStore | None" = None


def derive_title(content: str) -> str:
    """Session title from the first user message."""
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + TITLE_ELLIPSIS
    return content


def _default_session(**overrides: Any) -> Session:
    """A fresh session on the default model with default sampling config."""
    fields: dict[str, Any] = {"model": default_model(), "config": ModelConfig()}
    fields.update(overrides)
    return Session.model_validate(fields)


class SessionStore:
    """Single source of truth for chat sessions and the active pointer.

    Every mutation replaces the affected Session with an updated copy and
    then writes the whole session set to storage before returning. There is
    always at least one session once loaded, and the active id always
    references an existing session.
    """

    def __init__(self, storage: LocalStorage | None = None):
        """Initialize an empty, unloaded store.

        Args:
            storage: Durable storage. Without one the store is memory-only.
        """
        self._storage = storage
        self._sessions: list[Session] = []
        self._active_id: str | None = None

    @classmethod
    async def load(cls, storage: LocalStorage | None = None) -> "SessionStore":
        """Create a store from the last persisted session set.

        Absent, unreadable, corrupt or empty state seeds one default session.
        """
        store = cls(storage)
        state = await store._read_state()

        if state is None or not state.sessions:
            store._sessions = [_default_session()]
            store._active_id = store._sessions[0].id
            logger.info("No saved chats found, created a default session")
        else:
            store._sessions = state.sessions
            ids = {s.id for s in state.sessions}
            if state.active_session_id in ids:
                store._active_id = state.active_session_id
            else:
                store._active_id = state.sessions[0].id
            logger.info(f"Loaded {len(store._sessions)} saved chat session(s)")

        await store._persist()
        return store

    @property
    def sessions(self) -> list[Session]:
        """All sessions in creation order."""
        return list(self._sessions)

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> Session | None:
        if self._active_id is None:
            return None
        return self.get_session(self._active_id)

    def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID.

        Args:
            session_id: The session ID to look up.

        Returns:
            The Session if found, None otherwise.
        """
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    async def create_session(self, overrides: dict[str, Any] | None = None) -> Session:
        """Create a default session, apply overrides, and make it active.

        Args:
            overrides: Field values replacing the defaults. `id` and
                `messages` are always fresh.

        Returns:
            The new session.
        """
        fields = dict(overrides or {})
        fields.pop("id", None)
        fields.pop("messages", None)

        session = _default_session(**fields)
        self._sessions = [*self._sessions, session]
        self._active_id = session.id

        logger.info(
            f"Created chat session {session.id} on {session.model.id} "
            f"(total sessions: {len(self._sessions)})"
        )
        await self._persist()
        return session

    async def duplicate_session(self, source_id: str) -> Session | None:
        """Create a session inheriting everything but id, title and messages.

        Returns:
            The new session, or None if source_id does not exist.
        """
        source = self.get_session(source_id)
        if source is None:
            logger.warning(f"Cannot duplicate unknown session {source_id}")
            return None

        overrides = {name: getattr(source, name) for name in INHERITED_FIELDS}
        return await self.create_session(overrides)

    async def delete_session(self, session_id: str) -> None:
        """Remove a session, keeping the set non-empty and the pointer valid."""
        if self.get_session(session_id) is None:
            return

        self._sessions = [s for s in self._sessions if s.id != session_id]
        logger.info(f"Deleted chat session {session_id}")

        if self._active_id == session_id:
            if self._sessions:
                self._active_id = self._sessions[0].id
            else:
                # create_session persists
                await self.create_session()
                return

        await self._persist()

    async def set_active(self, session_id: str) -> None:
        """Point the active session at session_id. Unknown ids are ignored."""
        if self.get_session(session_id) is None:
            logger.warning(f"Ignoring activation of unknown session {session_id}")
            return

        self._active_id = session_id
        await self._persist()

    async def update_session(self, session_id: str, updates: dict[str, Any]) -> Session | None:
        """Shallow-merge fields into a session.

        Args:
            session_id: The session to update.
            updates: Any of title, description, system_prompt, model, config,
                credential.

        Returns:
            The updated session, or None if session_id does not exist.

        Raises:
            ValueError: If updates names a field that cannot be changed or
                the merged session is invalid.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")

        session = self.get_session(session_id)
        if session is None:
            return None

        fields = {name: getattr(session, name) for name in Session.model_fields}
        fields.update(updates)
        try:
            updated = Session.model_validate(fields)
        except PydanticValidationError as e:
            raise ValueError(f"Invalid session update: {e}") from e

        await self._replace(updated)
        return updated

    async def append_message(self, session_id: str, message: Message) -> None:
        """Append a message; the first user message also names the session."""
        session = self.get_session(session_id)
        if session is None:
            logger.warning(f"Dropping message for unknown session {session_id}")
            return

        update: dict[str, Any] = {"messages": [*session.messages, message]}
        if (
            message.role == ChatRole.USER
            and session.title == DEFAULT_TITLE
            and not session.has_user_messages
        ):
            update["title"] = derive_title(message.content)

        await self._replace(session.model_copy(update=update))

    async def clear_session(self, session_id: str) -> None:
        """Empty the message history and reset the title."""
        session = self.get_session(session_id)
        if session is None:
            return

        await self._replace(
            session.model_copy(update={"messages": [], "title": DEFAULT_TITLE})
        )

    async def _replace(self, updated: Session) -> None:
        """Swap in a new version of a session and persist."""
        self._sessions = [
            updated if s.id == updated.id else s for s in self._sessions
        ]
        await self._persist()

    def _serialize(self) -> str:
        """Whole session set as one JSON blob, credentials encrypted."""
        state = PersistedState(
            sessions=[
                s.model_copy(update={"credential": encrypt_secret(s.credential)})
                for s in self._sessions
            ],
            active_session_id=self._active_id,
        )
        return state.model_dump_json(by_alias=True)

    async def _persist(self) -> None:
        """Write the session set. Failures are logged; memory stays authoritative."""
        if self._storage is None:
            return
        try:
            await self._storage.set_item(STORAGE_KEY, self._serialize())
        except PersistenceError as e:
            logger.warning(f"Failed to persist chat sessions: {e}")

    async def _read_state(self) -> PersistedState | None:
        """Read and decode the persisted session set, or None if unusable."""
        if self._storage is None:
            return None

        try:
            raw = await self._storage.get_item(STORAGE_KEY)
        except PersistenceError as e:
            logger.warning(f"Failed to read saved chats: {e}")
            return None

        if not raw:
            return None

        try:
            state = PersistedState.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Error parsing saved chats: {e}")
            return None

        sessions = []
        for session in state.sessions:
            try:
                credential = decrypt_secret(session.credential)
            except SecretsError as e:
                logger.warning(f"Discarding unreadable credential for session {session.id}: {e}")
                credential = ""
            sessions.append(session.model_copy(update={"credential": credential}))

        return state.model_copy(update={"sessions": sessions})


def get_session_store() -> SessionStore:
    """Get the singleton session store.

    Returns:
        The global SessionStore.

    Raises:
        RuntimeError: If init_session_store has not run.
    """
    if _store is None:
        raise RuntimeError("Session store not initialized. Call init_session_store first.")
    return _store


async def init_session_store(db_path: str | None = None) -> SessionStore:
    """Open storage and load the session set.

    Args:
        db_path: SQLite file. Defaults to DATABASE_PATH.

    Returns:
        The initialized SessionStore.
    """
    global _store
    await init_database(db_path or database_path())
    _store = await SessionStore.load(LocalStorage())
    return _store


async def shutdown_session_store() -> None:
    """Release the store and close storage."""
    global _store
    _store = None
    await close_database()

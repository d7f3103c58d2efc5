"""
Session Manager for State Persistence

Stores each ConversationSession as one JSON document per row in Supabase,
with an in-memory fallback when no client is configured. Sessions are
always written whole; loaded sessions are detached copies.
"""

import os
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from anchored_tutor.session_state import (
    ConceptCoverage,
    ConversationSession,
    Message,
    MessageType,
    SessionContext,
    SessionStatus,
)

logger = logging.getLogger(__name__)


def iso_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 text for storage (None stays None)."""
    return value.isoformat() if value else None


def parse_timestamp(value: Optional[str], default: Optional[datetime] = None) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else default


def session_to_dict(session: ConversationSession) -> Dict[str, Any]:
    """
    Convert ConversationSession to a JSON-compatible document.

    Args:
        session: ConversationSession object

    Returns:
        Dictionary representation
    """
    return {
        "session_id": session.session_id,
        "user_id": session.user_id,
        "subject": session.subject,
        "current_topic": session.current_topic,
        "context": {
            "difficulty": session.context.difficulty,
            "teaching_mode": session.context.teaching_mode,
            "previous_concepts": list(session.context.previous_concepts),
            "session_type": session.context.session_type,
            "message_count": session.context.message_count,
        },
        "messages": [
            {
                "content": msg.content,
                "is_user": msg.is_user,
                "message_type": msg.message_type.value,
                "timestamp": iso_timestamp(msg.timestamp),
                "moderation": msg.moderation,
                "metadata": msg.metadata,
            }
            for msg in session.messages
        ],
        "concepts_covered": [
            {"concept": c.concept, "confidence": c.confidence, "timestamp": iso_timestamp(c.timestamp)}
            for c in session.concepts_covered
        ],
        "status": session.status.value,
        "title": session.title,
        "recommended_topics": list(session.recommended_topics),
        "generated_assessment_ids": list(session.generated_assessment_ids),
        "start_time": iso_timestamp(session.start_time),
        "end_time": iso_timestamp(session.end_time),
        "total_duration": session.total_duration,
        "last_activity": iso_timestamp(session.last_activity),
        "created_at": iso_timestamp(session.created_at),
    }


def dict_to_session(data: Dict[str, Any]) -> ConversationSession:
    """
    Convert a stored document back into a ConversationSession.

    Args:
        data: Dictionary produced by session_to_dict

    Returns:
        ConversationSession object
    """
    now = datetime.now()
    context = data.get("context") or {}

    return ConversationSession(
        session_id=data["session_id"],
        user_id=data["user_id"],
        subject=data.get("subject") or "General Discussion",
        current_topic=data.get("current_topic"),
        context=SessionContext(
            difficulty=context.get("difficulty", "normal"),
            teaching_mode=context.get("teaching_mode", "normal"),
            previous_concepts=list(context.get("previous_concepts", [])),
            session_type=context.get("session_type", "teaching"),
            message_count=context.get("message_count", 0),
        ),
        messages=[
            Message(
                content=msg["content"],
                is_user=msg["is_user"],
                message_type=MessageType(msg.get("message_type", "text")),
                timestamp=parse_timestamp(msg.get("timestamp"), now),
                moderation=msg.get("moderation"),
                metadata=msg.get("metadata") or {},
            )
            for msg in data.get("messages", [])
        ],
        concepts_covered=[
            ConceptCoverage(
                concept=c["concept"],
                confidence=c["confidence"],
                timestamp=parse_timestamp(c.get("timestamp"), now),
            )
            for c in data.get("concepts_covered", [])
        ],
        status=SessionStatus(data.get("status", "active")),
        title=data.get("title"),
        recommended_topics=list(data.get("recommended_topics", [])),
        generated_assessment_ids=list(data.get("generated_assessment_ids", [])),
        start_time=parse_timestamp(data.get("start_time"), now),
        end_time=parse_timestamp(data.get("end_time")),
        total_duration=data.get("total_duration"),
        last_activity=parse_timestamp(data.get("last_activity"), now),
        created_at=parse_timestamp(data.get("created_at"), now),
    )


class SessionManager:
    """
    Persists conversation sessions.

    Uses the Supabase table named by SESSIONS_TABLE (default
    "chat_sessions") when a client is given, else an in-memory dict.
    """

    def __init__(self, supabase_client=None, table: Optional[str] = None):
        """
        Initialize SessionManager.

        Args:
            supabase_client: Supabase client instance (optional)
            table: Table name override
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.table = table or os.getenv("SESSIONS_TABLE", "chat_sessions")

        # Serialized documents, so callers never hold a reference into the store
        self._in_memory_sessions: Dict[str, str] = {}

    async def get_session(self, session_id: str) -> Optional[ConversationSession]:
        """
        Load a session by id.

        Returns:
            ConversationSession or None if not found
        """
        if not self.use_supabase:
            document = self._in_memory_sessions.get(session_id)
            return dict_to_session(json.loads(document)) if document else None

        try:
            result = self.supabase.table(self.table).select('document').eq('session_id', session_id).execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error loading session {session_id}: {e}")
            raise

        if result.data:
            return dict_to_session(result.data[0]["document"])
        return None

    async def save_session(self, session: ConversationSession) -> bool:
        """
        Save the whole session document (insert or replace).

        Raises:
            Exception: Storage errors are logged and re-raised
        """
        document = session_to_dict(session)

        if not self.use_supabase:
            self._in_memory_sessions[session.session_id] = json.dumps(document)
            return True

        row = {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "status": session.status.value,
            "last_activity": document["last_activity"],
            "document": document,
        }
        try:
            self.supabase.table(self.table).upsert(row, on_conflict="session_id").execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error saving session {session.session_id}: {e}")
            raise

        logger.debug(f"💾 [SessionManager] Saved session {session.session_id} ({len(session.messages)} messages)")
        return True

    async def list_sessions(self, user_id: str, status: Optional[SessionStatus] = None) -> List[ConversationSession]:
        """
        List a learner's sessions, most recently active first.

        Args:
            user_id: Owner id
            status: Optional status filter
        """
        if not self.use_supabase:
            sessions = [dict_to_session(json.loads(document)) for document in self._in_memory_sessions.values()]
            sessions = [s for s in sessions if s.user_id == user_id and (status is None or s.status == status)]
        else:
            try:
                query = self.supabase.table(self.table).select('document').eq('user_id', user_id)
                if status is not None:
                    query = query.eq('status', status.value)
                result = query.execute()
            except Exception as e:
                logger.error(f"❌ [SessionManager] Error listing sessions for {user_id}: {e}")
                raise
            sessions = [dict_to_session(row["document"]) for row in (result.data or [])]

        return sorted(sessions, key=lambda s: s.last_activity, reverse=True)

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session.

        Returns:
            True if a session was deleted
        """
        if not self.use_supabase:
            return self._in_memory_sessions.pop(session_id, None) is not None

        try:
            result = self.supabase.table(self.table).delete().eq('session_id', session_id).execute()
        except Exception as e:
            logger.error(f"❌ [SessionManager] Error deleting session {session_id}: {e}")
            raise
        return bool(result.data)

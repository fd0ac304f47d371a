"""
Memory record model - the unit stored, updated and deprecated by batch operations.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class MemoryType(str, Enum):
    ARCHITECTURAL_DECISION = "architectural_decision"
    CODE_PATTERN = "code_pattern"
    BUG_PATTERN = "bug_pattern"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    USER_PREFERENCE = "user_preference"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MemoryRecord:
    project_id: str
    content: str
    type: MemoryType
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created: datetime = field(default_factory=utcnow)
    last_accessed: datetime = field(default_factory=utcnow)
    is_deprecated: bool = False
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        # Unknown categories are rejected, never coerced
        self.type = MemoryType(self.type)
        if not self.is_deleted:
            if not self.project_id or not self.project_id.strip():
                raise ValueError("project_id cannot be empty for a live memory")
            if not self.content or not self.content.strip():
                raise ValueError("content cannot be empty for a live memory")

    @classmethod
    def from_request(cls, request) -> "MemoryRecord":
        """Build a new record from a CreateMemoryRequest."""
        now = utcnow()
        return cls(
            project_id=request.project_id,
            content=request.content,
            type=request.type,
            embedding=list(request.embedding) if request.embedding is not None else None,
            metadata=dict(request.metadata or {}),
            created=now,
            last_accessed=now,
        )

    def apply_update(self, update, now: Optional[datetime] = None) -> None:
        """Apply the fields present in a partial update; metadata is replaced, not merged."""
        if update.content:
            if not update.content.strip():
                raise ValueError("content cannot be blank")
            self.content = update.content
        if update.embedding is not None:
            self.embedding = list(update.embedding)
        if update.type is not None:
            self.type = MemoryType(update.type)
        if update.metadata is not None:
            self.metadata = dict(update.metadata)
        if update.is_deprecated is not None:
            self.is_deprecated = update.is_deprecated
        self.last_accessed = now or utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "content": self.content,
            "type": self.type.value,
            "embedding": self.embedding,
            "metadata": self.metadata,
            "created": self.created.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
            "is_deprecated": self.is_deprecated,
            "is_deleted": self.is_deleted,
        }
        if self.deleted_at:
            data["deleted_at"] = self.deleted_at.isoformat()
        return data

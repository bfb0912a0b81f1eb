"""Data models for SkillHub.

This module defines both Pydantic domain models (what services read and
mutate) and SQLModel ORM rows (how the aggregate store persists them).

Sections:
1. Pydantic domain aggregates, enums and typed patch structs
2. SQLModel tables for aggregate persistence
3. Link tables for secondary lookups
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel
from sqlmodel import Field as SQLField

from skillhub.utils import format_iso, new_id, parse_datetime, utc_now

# =============================================================================
# Section 1: Pydantic Domain Models
# =============================================================================


class NotificationType(StrEnum):
    """Kinds of notification a mutation can fan out."""

    POST_LIKE = "POST_LIKE"
    COMMENT_LIKE = "COMMENT_LIKE"
    NEW_COMMENT = "NEW_COMMENT"
    NEW_FOLLOWER = "NEW_FOLLOWER"


class LikeAction(StrEnum):
    """Requested like-set transition."""

    LIKE = "like"
    UNLIKE = "unlike"


class Identity(BaseModel):
    """Verified identity handed to the core by the identity provider.

    Attributes:
        user_id: Stable user identifier
        email: Verified email address
        name: Display name, if the provider supplies one
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    name: Optional[str] = None


class User(BaseModel):
    """User profile with back-references maintained by the core.

    Attributes:
        id: Unique user ID
        email: Email address (unique; None for users created on demand)
        name: Display name used when rendering notifications
        bio: Free-form biography
        location: Free-form location
        profile_picture: Avatar URL
        skills: Declared skills
        interests: Declared interests
        communities: IDs of communities joined
        owned_communities: IDs of communities created
        following: IDs of users this user follows
        followers: IDs of users following this user
        post_ids: IDs of posts authored, in creation order
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    email: Optional[str] = None
    name: str = "New User"
    bio: Optional[str] = None
    location: Optional[str] = None
    profile_picture: Optional[str] = None
    skills: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    communities: set[str] = Field(default_factory=set)
    owned_communities: set[str] = Field(default_factory=set)
    following: set[str] = Field(default_factory=set)
    followers: set[str] = Field(default_factory=set)
    post_ids: list[str] = Field(default_factory=list)
    version: int = 0


class Comment(BaseModel):
    """Comment nested inside exactly one Post.

    Attributes:
        id: Comment ID, unique within the platform
        author_id: ID of the commenting user
        content: Comment text
        likes: IDs of users who liked the comment
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    author_id: str
    content: str
    likes: set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v

    @property
    def like_count(self) -> int:
        return len(self.likes)


class Post(BaseModel):
    """Content post with its like-set and ordered comments.

    Attributes:
        id: Unique post ID
        author_id: ID of the authoring user (sole mutator)
        content: Text body; may be None only when media is attached
        media_urls: Attached media URLs
        tags: Free-form tags
        category: Skill category
        likes: IDs of users who liked the post
        comments: Comments in insertion order
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    author_id: str
    content: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list)
    tags: set[str] = Field(default_factory=set)
    category: Optional[str] = None
    likes: set[str] = Field(default_factory=set)
    comments: list[Comment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 0

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v

    @property
    def has_body(self) -> bool:
        """True when the post carries text content or at least one media URL."""
        return bool(self.content and self.content.strip()) or bool(self.media_urls)

    @property
    def like_count(self) -> int:
        return len(self.likes)

    def find_comment(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None


class Community(BaseModel):
    """Community with its member set and last-message cache.

    ``last_message_preview`` and ``last_message_time`` are a denormalized
    cache of the chronologically last accepted message; they can always be
    rebuilt from the message list.

    Attributes:
        id: Unique community ID
        name: Display name
        description: Optional description
        owner_id: Creator; always a member
        is_private: Hidden from the public listing when True
        members: IDs of member users
        tags: Free-form tags
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        last_message_preview: Content of the latest message
        last_message_time: Timestamp of the latest message
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    owner_id: str
    is_private: bool = False
    members: set[str] = Field(default_factory=set)
    tags: set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_message_preview: Optional[str] = None
    last_message_time: Optional[datetime] = None
    version: int = 0

    @field_validator("created_at", "updated_at", "last_message_time", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v

    def has_member(self, user_id: str) -> bool:
        return user_id in self.members


class CommunityMessage(BaseModel):
    """Chat message posted to a community.

    Attributes:
        id: Unique message ID
        community_id: Owning community (immutable)
        sender_id: Sending member
        content: Message text
        timestamp: Server-assigned send time (UTC)
        read: Single per-message read flag
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    community_id: str
    sender_id: str
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    read: bool = False
    version: int = 0

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v


class Notification(BaseModel):
    """Point-in-time notification record.

    ``content`` is rendered once at creation and never recomputed. Only
    ``read`` changes after creation, through ``model_copy``.

    Attributes:
        id: Unique notification ID
        recipient_id: User the notification is for
        sender_id: User whose action caused it
        type: Notification kind
        content: Pre-rendered human-readable text
        related_entity_id: Post or comment (or user, for follows) that caused it
        read: Read flag
        created_at: Creation timestamp (UTC)
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(default_factory=new_id)
    recipient_id: str
    sender_id: str
    type: NotificationType
    content: str
    related_entity_id: str
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    version: int = 0

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v


class PlanTopic(BaseModel):
    """Single topic within a learning plan.

    Attributes:
        id: Topic ID, unique within its plan
        title: Topic title
        description: Optional description
        resources: URLs or references
        completed: Completion flag
        completed_at: When the topic was completed (only meaningful if completed)
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    resources: list[str] = Field(default_factory=list)
    completed: bool = False
    completed_at: Optional[datetime] = None

    @field_validator("completed_at", mode="before")
    @classmethod
    def _coerce_completed_at(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v


class LearningPlan(BaseModel):
    """Learning plan with derived completion progress.

    Attributes:
        id: Unique plan ID
        owner_id: Owning user
        title: Plan title
        description: Optional description
        category: Skill category
        progress: Derived completion percentage in [0, 100]
        topics: Topics in insertion order
        created_at: Creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        version: Compare-and-swap version stamp
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    topics: list[PlanTopic] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 0

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Any) -> Any:
        return parse_datetime(v) if v is not None else v

    def find_topic(self, topic_id: str) -> Optional[PlanTopic]:
        for topic in self.topics:
            if topic.id == topic_id:
                return topic
        return None


# -----------------------------------------------------------------------------
# Typed partial updates
# -----------------------------------------------------------------------------


class Patch(BaseModel):
    """Base for optional-field patches.

    A field takes part in the update only if it was explicitly provided,
    which keeps "absent" distinct from "set to None".
    """

    model_config = ConfigDict(extra="forbid")

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def apply_to(self, target: BaseModel) -> Any:
        """Return a re-validated copy of ``target`` with the changes applied."""
        data = target.model_dump()
        data.update(self.changes())
        return type(target).model_validate(data)


def _none_to_empty(v: Any) -> Any:
    return [] if v is None else v


class PostPatch(Patch):
    """Partial update of a Post."""

    content: Optional[str] = None
    media_urls: Optional[list[str]] = None
    tags: Optional[set[str]] = None
    category: Optional[str] = None

    @field_validator("media_urls", "tags", mode="before")
    @classmethod
    def _empty_collections(cls, v: Any) -> Any:
        return _none_to_empty(v)


class PlanPatch(Patch):
    """Partial update of a LearningPlan. Progress is derived and not patchable."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    topics: Optional[list[PlanTopic]] = None

    @field_validator("topics", mode="before")
    @classmethod
    def _empty_topics(cls, v: Any) -> Any:
        return _none_to_empty(v)


class ProfilePatch(Patch):
    """Partial update of a User profile."""

    name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    profile_picture: Optional[str] = None
    skills: Optional[list[str]] = None
    interests: Optional[list[str]] = None

    @field_validator("skills", "interests", mode="before")
    @classmethod
    def _empty_lists(cls, v: Any) -> Any:
        return _none_to_empty(v)


# =============================================================================
# Section 2: SQLModel Tables for Aggregate Persistence
# =============================================================================


def _json_list(values: Any) -> list:
    """Serialize a set or list for a JSON column; sets are sorted."""
    if isinstance(values, (set, frozenset)):
        return sorted(values)
    return list(values)


class UserRow(SQLModel, table=True):
    """Persisted representation of a User."""

    id: str = SQLField(primary_key=True)
    email: Optional[str] = SQLField(default=None, index=True, unique=True)
    name: str
    bio: Optional[str] = None
    location: Optional[str] = None
    profile_picture: Optional[str] = None
    skills: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    interests: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    communities: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    owned_communities: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    following: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    followers: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    post_ids: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    version: int = 0

    @classmethod
    def from_domain(cls, user: User) -> "UserRow":
        """Create UserRow from a User aggregate."""
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            bio=user.bio,
            location=user.location,
            profile_picture=user.profile_picture,
            skills=_json_list(user.skills),
            interests=_json_list(user.interests),
            communities=_json_list(user.communities),
            owned_communities=_json_list(user.owned_communities),
            following=_json_list(user.following),
            followers=_json_list(user.followers),
            post_ids=_json_list(user.post_ids),
            version=user.version,
        )

    def to_domain(self) -> User:
        return User.model_validate(self.model_dump())


class PostRow(SQLModel, table=True):
    """Persisted representation of a Post.

    Comments are nested in the ``comments`` JSON column: they have no
    lifecycle outside their post.
    """

    id: str = SQLField(primary_key=True)
    author_id: str = SQLField(index=True)
    content: Optional[str] = None
    media_urls: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    category: Optional[str] = SQLField(default=None, index=True)
    likes: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    comments: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: str = SQLField(index=True)
    updated_at: str
    version: int = 0

    @classmethod
    def from_domain(cls, post: Post) -> "PostRow":
        """Create PostRow from a Post aggregate."""
        comments = []
        for comment in post.comments:
            data = comment.model_dump(mode="json")
            data["likes"] = _json_list(comment.likes)
            data["created_at"] = format_iso(comment.created_at)
            data["updated_at"] = format_iso(comment.updated_at)
            comments.append(data)
        return cls(
            id=post.id,
            author_id=post.author_id,
            content=post.content,
            media_urls=_json_list(post.media_urls),
            tags=_json_list(post.tags),
            category=post.category,
            likes=_json_list(post.likes),
            comments=comments,
            created_at=format_iso(post.created_at),
            updated_at=format_iso(post.updated_at),
            version=post.version,
        )

    def to_domain(self) -> Post:
        return Post.model_validate(self.model_dump())


class CommunityRow(SQLModel, table=True):
    """Persisted representation of a Community."""

    id: str = SQLField(primary_key=True)
    name: str
    description: Optional[str] = None
    owner_id: str = SQLField(index=True)
    is_private: bool = SQLField(default=False, index=True)
    members: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: str
    updated_at: str
    last_message_preview: Optional[str] = None
    last_message_time: Optional[str] = None
    version: int = 0

    @classmethod
    def from_domain(cls, community: Community) -> "CommunityRow":
        """Create CommunityRow from a Community aggregate."""
        return cls(
            id=community.id,
            name=community.name,
            description=community.description,
            owner_id=community.owner_id,
            is_private=community.is_private,
            members=_json_list(community.members),
            tags=_json_list(community.tags),
            created_at=format_iso(community.created_at),
            updated_at=format_iso(community.updated_at),
            last_message_preview=community.last_message_preview,
            last_message_time=format_iso(community.last_message_time),
            version=community.version,
        )

    def to_domain(self) -> Community:
        return Community.model_validate(self.model_dump())


class CommunityMessageRow(SQLModel, table=True):
    """Persisted representation of a CommunityMessage."""

    id: str = SQLField(primary_key=True)
    community_id: str = SQLField(index=True)
    sender_id: str
    content: str
    timestamp: str = SQLField(index=True)
    read: bool = False
    version: int = 0

    @classmethod
    def from_domain(cls, message: CommunityMessage) -> "CommunityMessageRow":
        """Create CommunityMessageRow from a CommunityMessage."""
        return cls(
            id=message.id,
            community_id=message.community_id,
            sender_id=message.sender_id,
            content=message.content,
            timestamp=format_iso(message.timestamp),
            read=message.read,
            version=message.version,
        )

    def to_domain(self) -> CommunityMessage:
        return CommunityMessage.model_validate(self.model_dump())


class NotificationRow(SQLModel, table=True):
    """Persisted representation of a Notification."""

    id: str = SQLField(primary_key=True)
    recipient_id: str = SQLField(index=True)
    sender_id: str
    type: str
    content: str
    related_entity_id: str = SQLField(index=True)
    read: bool = SQLField(default=False, index=True)
    created_at: str = SQLField(index=True)
    version: int = 0

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationRow":
        """Create NotificationRow from a Notification."""
        return cls(
            id=notification.id,
            recipient_id=notification.recipient_id,
            sender_id=notification.sender_id,
            type=notification.type.value,
            content=notification.content,
            related_entity_id=notification.related_entity_id,
            read=notification.read,
            created_at=format_iso(notification.created_at),
            version=notification.version,
        )

    def to_domain(self) -> Notification:
        return Notification.model_validate(self.model_dump())


class LearningPlanRow(SQLModel, table=True):
    """Persisted representation of a LearningPlan; topics are nested JSON."""

    id: str = SQLField(primary_key=True)
    owner_id: str = SQLField(index=True)
    title: str
    description: Optional[str] = None
    category: Optional[str] = SQLField(default=None, index=True)
    progress: int = 0
    topics: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: str
    updated_at: str
    version: int = 0

    @classmethod
    def from_domain(cls, plan: LearningPlan) -> "LearningPlanRow":
        """Create LearningPlanRow from a LearningPlan."""
        topics = []
        for topic in plan.topics:
            data = topic.model_dump(mode="json")
            data["completed_at"] = format_iso(topic.completed_at)
            topics.append(data)
        return cls(
            id=plan.id,
            owner_id=plan.owner_id,
            title=plan.title,
            description=plan.description,
            category=plan.category,
            progress=plan.progress,
            topics=topics,
            created_at=format_iso(plan.created_at),
            updated_at=format_iso(plan.updated_at),
            version=plan.version,
        )

    def to_domain(self) -> LearningPlan:
        return LearningPlan.model_validate(self.model_dump())


# =============================================================================
# Section 3: Link Tables
# =============================================================================


class CommunityMemberLink(SQLModel, table=True):
    """Membership index mirroring ``CommunityRow.members``.

    Rewritten in the same transaction as the community row, so it never
    disagrees with the member set.
    """

    community_id: str = SQLField(foreign_key="communityrow.id", primary_key=True)
    user_id: str = SQLField(primary_key=True, index=True)

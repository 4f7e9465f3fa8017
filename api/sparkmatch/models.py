from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    text,
    true,
)

from .database import Base


class ActorProfile(Base):
    """Read-only mirror of the profile collaborator's data."""

    __tablename__ = "actor_profile"

    id = Column(String(36), primary_key=True)
    display_name = Column(String, nullable=True)
    birth_date = Column(Date, nullable=True)
    gender = Column(String(16), nullable=True)
    seeking_gender = Column(String(16), nullable=True)
    postal_code = Column(String(10), nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    certification_status = Column(String(16), nullable=False, server_default="none")
    is_public = Column(Boolean, nullable=False, server_default=true())
    certified_viewers_only = Column(Boolean, nullable=False, server_default=false())
    shadow_restricted = Column(Boolean, nullable=False, server_default=false())
    created_at = Column(DateTime(timezone=True), nullable=False)
    disabled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_actor_profile_gender_seeking", "gender", "seeking_gender"),
        Index("idx_actor_profile_created_at", "created_at"),
    )


class PostalCentroid(Base):
    __tablename__ = "postal_centroid"

    postal_code = Column(String(10), primary_key=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)


class UserBlock(Base):
    __tablename__ = "user_block"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("actor_profile.id", ondelete="CASCADE"), nullable=False)
    blocked_user_id = Column(String(36), ForeignKey("actor_profile.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "blocked_user_id", name="uq_user_block_pair"),
        Index("idx_user_block_blocked_user_id", "blocked_user_id"),
    )


class GiftLike(Base):
    __tablename__ = "gift_like"

    id = Column(String(36), primary_key=True)
    sender_id = Column(String(36), nullable=False)
    receiver_id = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("sender_id", "receiver_id", name="uq_gift_like_pair"),
        Index("idx_gift_like_receiver_id", "receiver_id"),
    )


class Spark(Base):
    __tablename__ = "spark"

    id = Column(String(36), primary_key=True)
    sender_id = Column(String(36), nullable=False)
    receiver_id = Column(String(36), nullable=False)
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'expired', 'withdrawn')", name="ck_spark_status"),
        Index(
            "uq_spark_active_pair",
            "sender_id",
            "receiver_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_spark_receiver_id", "receiver_id"),
    )


class EchoOffer(Base):
    __tablename__ = "echo_offer"

    id = Column(String(36), primary_key=True)
    sender_id = Column(String(36), nullable=False)
    receiver_id = Column(String(36), nullable=False)
    spark_id = Column(String(36), ForeignKey("spark.id"), nullable=False)
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('offered', 'returned', 'declined', 'expired')", name="ck_echo_offer_status"),
        Index(
            "uq_echo_offer_offered_pair",
            "sender_id",
            "receiver_id",
            unique=True,
            postgresql_where=text("status = 'offered'"),
            sqlite_where=text("status = 'offered'"),
        ),
        Index("idx_echo_offer_receiver_id", "receiver_id"),
    )


class GiftStock(Base):
    __tablename__ = "gift_stock"

    actor_id = Column(String(36), primary_key=True)
    currency = Column(String(8), primary_key=True)
    periodic_left = Column(Integer, nullable=False, server_default="0")
    purchased_left = Column(Integer, nullable=False, server_default="0")
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("currency IN ('spark', 'echo')", name="ck_gift_stock_currency"),
        CheckConstraint("periodic_left >= 0", name="ck_gift_stock_periodic_non_negative"),
        CheckConstraint("purchased_left >= 0", name="ck_gift_stock_purchased_non_negative"),
    )


class GiftStockMovement(Base):
    __tablename__ = "gift_stock_movement"

    id = Column(String(36), primary_key=True)
    actor_id = Column(String(36), nullable=False)
    currency = Column(String(8), nullable=False)
    component = Column(String(16), nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(String(32), nullable=False)
    ref_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_gift_stock_movement_actor", "actor_id", "currency"),
        Index("idx_gift_stock_movement_ref_id", "ref_id"),
    )


class ActorEntitlement(Base):
    """Written by the billing collaborator."""

    __tablename__ = "actor_entitlement"

    actor_id = Column(String(36), primary_key=True)
    tier = Column(String(16), nullable=False, server_default="free")
    expires_at = Column(DateTime(timezone=True), nullable=True)


class MessagingQuota(Base):
    __tablename__ = "messaging_quota"

    actor_id = Column(String(36), primary_key=True)
    last_checked_at = Column(DateTime(timezone=True), nullable=False)


class OpenFreeConvLog(Base):
    __tablename__ = "open_free_conv_log"

    id = Column(String(36), primary_key=True)
    opener_id = Column(String(36), nullable=False)
    target_id = Column(String(36), nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("opener_id", "target_id", name="uq_open_free_conv_pair"),
        Index("idx_open_free_conv_opener_opened_at", "opener_id", "opened_at"),
    )


class DiscoveryExposure(Base):
    __tablename__ = "discovery_exposure"

    viewer_id = Column(String(36), primary_key=True)
    candidate_id = Column(String(36), primary_key=True)
    shown_count = Column(Integer, nullable=False, server_default="0")
    window_started_at = Column(DateTime(timezone=True), nullable=False)
    last_shown_at = Column(DateTime(timezone=True), nullable=True)


class ChatThread(Base):
    __tablename__ = "chat_thread"

    id = Column(String(36), primary_key=True)
    participant_a_id = Column(String(36), nullable=False)
    participant_b_id = Column(String(36), nullable=False)
    unlock_reason = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_a_id", "participant_b_id", name="uq_chat_thread_pair"),
        CheckConstraint("participant_a_id < participant_b_id", name="ck_chat_thread_canonical"),
    )


class ChatMessage(Base):
    __tablename__ = "chat_message"

    id = Column(String(36), primary_key=True)
    thread_id = Column(String(36), ForeignKey("chat_thread.id", ondelete="CASCADE"), nullable=False)
    sender_user_id = Column(String(36), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_chat_message_thread_created", "thread_id", "created_at"),)


class InteractionEvent(Base):
    __tablename__ = "interaction_event"

    id = Column(String(36), primary_key=True)
    event_type = Column(String(32), nullable=False)
    actor_id = Column(String(36), nullable=False)
    target_id = Column(String(36), nullable=True)
    payload = Column(Text, nullable=False, server_default="{}")
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_interaction_event_target", "target_id", "created_at"),)

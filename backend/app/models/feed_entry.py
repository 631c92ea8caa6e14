"""
Feed Entry Model

A published piece of content bound to a feed. Paid entries may carry an
``expires_at`` deadline after which access becomes free.
"""

from sqlalchemy import Column, String, Text, BigInteger, Boolean, text
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.core.database import Base


class FeedEntry(Base):
    """Content entry published to a feed"""
    __tablename__ = "gv_feed_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    feed_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    # Content
    cid = Column(String(255), nullable=False, index=True)  # IPFS content identifier
    mime_type = Column(String(50), nullable=False)
    title = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(BigInteger, nullable=False, default=0)  # smallest unit (microUSDC)
    asset = Column(String(10), default='USDC')
    is_free = Column(Boolean, default=False)
    expires_at = Column(BigInteger, nullable=True, index=True)  # epoch seconds

    # Payment instruction (x402) currently mapped to the cid
    piid = Column(UUID(as_uuid=False), nullable=True)

    # Status
    is_active = Column(Boolean, default=True, index=True)

    # Timestamps (epoch seconds)
    created_at = Column(
        BigInteger,
        nullable=False,
        server_default=text("EXTRACT(EPOCH FROM CURRENT_TIMESTAMP)::BIGINT")
    )
    updated_at = Column(
        BigInteger,
        nullable=False,
        server_default=text("EXTRACT(EPOCH FROM CURRENT_TIMESTAMP)::BIGINT")
    )

    def __repr__(self):
        return f"<FeedEntry(id='{self.id}', cid='{self.cid}', is_free={self.is_free}, expires_at={self.expires_at})>"

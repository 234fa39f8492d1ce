from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.database import Base
import uuid


class SavedPlace(Base):
    __tablename__ = "saved_places"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    list_id = Column(String(255), nullable=False)
    place_id = Column(String(255), ForeignKey("places.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("list_id", "place_id", name="uq_saved_places_list_place"),
    )

    def __repr__(self):
        return f"<SavedPlace(user_id={self.user_id}, list_id={self.list_id}, place_id={self.place_id})>"

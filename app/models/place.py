from sqlalchemy import Column, String, DateTime, Float, Integer, Index
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.sql import func
from geoalchemy2 import Geography
from app.database import Base


class Place(Base):
    __tablename__ = "places"

    id = Column(String(255), primary_key=True, index=True)  # directory provider place id
    name = Column(String(255), nullable=False)
    formatted_address = Column(String(512))
    rating = Column(Float)
    user_ratings_total = Column(Integer, default=0)
    price_level = Column(Integer)
    types = Column(ARRAY(String(64)), default=list)
    business_status = Column(String(32), default="OPERATIONAL")
    opening_hours = Column(JSONB)  # weekly periods, Sunday is day 0
    location = Column(Geography("POINT", srid=4326, spatial_index=False), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_places_location", "location", postgresql_using="gist"),
    )

    def __repr__(self):
        return f"<Place(id={self.id}, name={self.name})>"

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    FARMER = "FARMER"


class ProcessingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    phone = Column(String(20))
    address = Column(Text)
    photo = Column(String(500))
    role = Column(Enum(Role, name="role"), nullable=False, default=Role.FARMER)
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    need_password_change = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    farmer_profile = relationship("FarmerProfile", back_populates="user", uselist=False,
                                  cascade="all, delete-orphan")
    admin_profile = relationship("AdminProfile", back_populates="user", uselist=False,
                                 cascade="all, delete-orphan")
    images = relationship("Image", back_populates="user")


class FarmerProfile(Base):
    __tablename__ = "farmer_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    crop_types = Column(JSON, nullable=False, default=list)
    farm_size = Column(Float)
    farming_experience = Column(Integer)
    farm_location = Column(String(255))
    soil_type = Column(String(20))
    irrigation_type = Column(String(20))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="farmer_profile")


class AdminProfile(Base):
    __tablename__ = "admin_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    department = Column(String(100))
    designation = Column(String(100))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="admin_profile")


class Image(Base):
    __tablename__ = "images"

    id = Column(String(36), primary_key=True, default=_uuid)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mimetype = Column(String(50), nullable=False)
    size = Column(Integer, nullable=False)
    path = Column(String(500), nullable=False)
    processed_path = Column(String(500))
    thumbnail_path = Column(String(500))
    width = Column(Integer)
    height = Column(Integer)
    processing_status = Column(Enum(ProcessingStatus, name="processing_status"), nullable=False,
                               default=ProcessingStatus.PENDING)
    processing_error = Column(Text)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    user = relationship("User", back_populates="images")
    predictions = relationship("Prediction", back_populates="image", cascade="all, delete-orphan",
                               order_by="Prediction.created_at")


class Disease(Base):
    __tablename__ = "diseases"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(150), unique=True, nullable=False)
    scientific_name = Column(String(150))
    description = Column(Text)
    symptoms = Column(JSON, nullable=False, default=list)
    causes = Column(JSON, nullable=False, default=list)
    treatment = Column(Text)
    prevention = Column(Text)
    severity = Column(Enum(Severity, name="severity"), nullable=False, default=Severity.MEDIUM)
    crops = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Prediction(Base):
    __tablename__ = "predictions"

    id = Column(String(36), primary_key=True, default=_uuid)
    image_id = Column(String(36), ForeignKey("images.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    disease_id = Column(String(36), ForeignKey("diseases.id", ondelete="SET NULL"))
    predicted_class = Column(String(150), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    is_healthy = Column(Boolean, nullable=False, default=False)
    treatment = Column(JSON)
    processing_time = Column(Float)
    raw_response = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    image = relationship("Image", back_populates="predictions")
    disease = relationship("Disease")


class DiseaseHistory(Base):
    __tablename__ = "disease_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    disease_id = Column(String(36), ForeignKey("diseases.id", ondelete="CASCADE"), nullable=False)
    prediction_id = Column(String(36), ForeignKey("predictions.id", ondelete="CASCADE"), nullable=False)
    image_id = Column(String(36), ForeignKey("images.id", ondelete="CASCADE"), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    detected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    disease = relationship("Disease")

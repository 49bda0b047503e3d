"""User, patient and doctor model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from backend.database import Base


class User(Base):
    """Represents an authenticated actor."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/admin


class Patient(Base):
    """Represents a patient profile, keyed by the user's email."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)


class Doctor(Base):
    """Represents a provider and the fee charged per appointment."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    appointment_fee = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False)

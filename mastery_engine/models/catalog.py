"""Module catalog and standards models (externally managed)."""

from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from mastery_engine.db.base import Base, JSONType


class ModuleVisibility(str, PyEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    DRAFT = "draft"


class Module(Base):
    """Catalog learning module."""

    __tablename__ = "modules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(255), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    grade_band = Column(String(32), nullable=False)  # "K", "3", "6-8", "HS"
    subject = Column(String(64), nullable=False)
    strand = Column(String(255), nullable=True)
    topic = Column(String(255), nullable=True)
    subtopic = Column(String(255), nullable=True)
    open_track = Column(Boolean, nullable=False, default=False)
    metadata_json = Column("metadata", JSONType, nullable=True)
    visibility = Column(String(20), nullable=False, default=ModuleVisibility.PUBLIC.value)

    __table_args__ = (Index("ix_modules_subject_visibility", "subject", "visibility"),)


class Standard(Base):
    """Curriculum standard lookup row."""

    __tablename__ = "standards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    framework = Column(String(64), nullable=False)  # e.g. "CCSS"
    code = Column(String(64), nullable=False)  # e.g. "3.NF.A.1"
    description = Column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("framework", "code", name="uq_standards_framework_code"),)


class ModuleStandard(Base):
    """Module-to-standard coverage link."""

    __tablename__ = "module_standards"

    module_id = Column(
        Integer,
        ForeignKey("modules.id", ondelete="CASCADE"),
        primary_key=True,
    )
    standard_id = Column(
        Integer,
        ForeignKey("standards.id", ondelete="CASCADE"),
        primary_key=True,
    )

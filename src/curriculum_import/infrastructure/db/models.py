"""SQLAlchemy models for curriculum and import tracking persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from curriculum_import.infrastructure.db.base import Base


class CourseModel(Base):
    """Course aggregate root; created by the back office, never by the importer."""

    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    modules: Mapped[list[ModuleModel]] = relationship(back_populates="course")


class ModuleModel(Base):
    __tablename__ = "modules"
    __table_args__ = (
        UniqueConstraint("course_id", "import_key", name="uq_modules_course_import_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    import_key: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    drive_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    course: Mapped[CourseModel] = relationship(back_populates="modules")
    subjects: Mapped[list[SubjectModel]] = relationship(back_populates="module")


class SubjectModel(Base):
    __tablename__ = "subjects"
    __table_args__ = (
        UniqueConstraint("course_id", "import_key", name="uq_subjects_course_import_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    module_id: Mapped[str] = mapped_column(ForeignKey("modules.id"), nullable=False, index=True)
    import_key: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    module_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    drive_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    module: Mapped[ModuleModel] = relationship(back_populates="subjects")
    lessons: Mapped[list[LessonModel]] = relationship(back_populates="subject")
    tests: Mapped[list[TestModel]] = relationship(back_populates="subject")


class LessonModel(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        UniqueConstraint("course_id", "import_key", name="uq_lessons_course_import_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(ForeignKey("subjects.id"), nullable=False, index=True)
    import_key: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content_url: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    drive_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    subject: Mapped[SubjectModel] = relationship(back_populates="lessons")


class TestModel(Base):
    """Assessment attached to a subject; answer key and questions stored as JSON text."""

    __test__ = False
    __tablename__ = "tests"
    __table_args__ = (
        UniqueConstraint("course_id", "import_key", name="uq_tests_course_import_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(ForeignKey("subjects.id"), nullable=False, index=True)
    import_key: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    content_url: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    drive_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    answer_key_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    questions_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    requires_manual_answer_key: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    subject: Mapped[SubjectModel] = relationship(back_populates="tests")


class ImportProgressModel(Base):
    """Progress row polled by clients; never deleted automatically."""

    __tablename__ = "import_progress"

    import_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    course_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    current_step: Mapped[str] = mapped_column(String(255), nullable=False)
    current_item: Mapped[str | None] = mapped_column(Text, nullable=True)
    phase: Mapped[str] = mapped_column(String(16), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_modules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_modules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_subjects: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_subjects: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_tests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DriveImportJobModel(Base):
    __tablename__ = "drive_import_jobs"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CourseImportLockModel(Base):
    """At most one live import per course."""

    __tablename__ = "course_import_locks"

    course_id: Mapped[str] = mapped_column(ForeignKey("courses.id"), primary_key=True)
    import_id: Mapped[str] = mapped_column(String(36), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .models import ImportJobStatus, ImportStep, NumberingMode, PackageStatus, TourType

Base = declarative_base()

MAX_SHORT_FIELD_LENGTH = 1000

# region Association tables
package_editors = Table(
    "package_editors",
    Base.metadata,
    Column("package_id", ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)

package_tags = Table(
    "package_tags",
    Base.metadata,
    Column("package_id", ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

tour_editors = Table(
    "tour_editors",
    Base.metadata,
    Column("tour_id", ForeignKey("tours.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)

block_editors = Table(
    "block_editors",
    Base.metadata,
    Column("block_id", ForeignKey("blocks.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)

question_authors = Table(
    "question_authors",
    Base.metadata,
    Column("question_id", ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True),
)
# endregion


class Author(Base):
    __tablename__ = "authors"
    __table_args__ = (UniqueConstraint("first_name", "last_name", name="uq_authors_full_name"),)

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    preamble = Column(Text)
    source_url = Column(String(2000))
    played_from = Column(Date)
    played_to = Column(Date)
    status = Column(Enum(PackageStatus), nullable=False, default=PackageStatus.DRAFT)
    numbering_mode = Column(Enum(NumberingMode), nullable=False, default=NumberingMode.GLOBAL)
    shared_editors = Column(Boolean, nullable=False, default=False)
    total_questions = Column(Integer, nullable=False, default=0)
    owner_id = Column(String(100), index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    tours = relationship(
        "Tour",
        back_populates="package",
        order_by="Tour.order_index",
        cascade="all, delete-orphan",
    )
    editors = relationship(Author, secondary=package_editors)
    tags = relationship(Tag, secondary=package_tags)


class Tour(Base):
    __tablename__ = "tours"

    id = Column(Integer, primary_key=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), index=True, nullable=False)
    number = Column(String(20), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    type = Column(Enum(TourType), nullable=False, default=TourType.REGULAR)
    preamble = Column(Text)
    comment = Column(Text)

    package = relationship(Package, back_populates="tours")
    blocks = relationship(
        "Block",
        back_populates="tour",
        order_by="Block.order_index",
        cascade="all, delete-orphan",
    )
    questions = relationship(
        "Question",
        back_populates="tour",
        order_by="Question.order_index",
        cascade="all, delete-orphan",
    )
    editors = relationship(Author, secondary=tour_editors)

    @property
    def is_warmup(self) -> bool:
        return self.type == TourType.WARMUP


class Block(Base):
    __tablename__ = "blocks"

    id = Column(Integer, primary_key=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(200))
    order_index = Column(Integer, nullable=False, default=0)
    preamble = Column(Text)

    tour = relationship(Tour, back_populates="blocks")
    questions = relationship("Question", back_populates="block", order_by="Question.order_index")
    editors = relationship(Author, secondary=block_editors)


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), index=True, nullable=False)
    block_id = Column(Integer, ForeignKey("blocks.id", ondelete="SET NULL"), index=True)
    order_index = Column(Integer, nullable=False, default=0)
    number = Column(String(20), nullable=False)
    host_instructions = Column(String(MAX_SHORT_FIELD_LENGTH))
    handout_text = Column(Text)
    handout_url = Column(String(2000))
    text = Column(Text, nullable=False, default="")
    answer = Column(String(MAX_SHORT_FIELD_LENGTH), nullable=False, default="")
    accepted_answers = Column(String(MAX_SHORT_FIELD_LENGTH))
    rejected_answers = Column(String(MAX_SHORT_FIELD_LENGTH))
    comment = Column(Text)
    comment_attachment_url = Column(String(2000))
    source = Column(Text)

    tour = relationship(Tour, back_populates="questions")
    block = relationship(Block, back_populates="questions")
    authors = relationship(Author, secondary=question_authors)


class ImportJobModel(Base):
    __tablename__ = "import_jobs"

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True)
    input_file_name = Column(String)
    input_file_path = Column(String)
    input_file_size_bytes = Column(Integer)
    status = Column(Enum(ImportJobStatus), index=True)
    current_step = Column(Enum(ImportStep))
    progress = Column(Integer)
    attempts = Column(Integer)
    next_retry_at = Column(DateTime)
    package_id = Column(Integer)
    error_message = Column(String)
    error_details = Column(Text)
    warnings_json = Column(Text)
    created_at = Column(DateTime)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)


def create_session_factory(database_url: str) -> sessionmaker:
    """Create the schema if needed and return a session factory bound to it."""
    engine = create_engine(database_url, future=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def _enable_sqlite_savepoints(engine) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT semantics.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

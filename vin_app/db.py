from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from .validation import utcnow


def make_engine(url: str):
    """
    Build the SQLAlchemy engine for the given database URL.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    # In FastAPI, more than one thread can interact with the database for the same request
    connect_args = {"check_same_thread": False}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # an in-memory database only lives as long as its single connection
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


engine = make_engine(settings.database_url)

# each instance of the SessionLocal class becomes a db session
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# parent class for the ORM models
Base = declarative_base()


class VinRecord(Base):
    __tablename__ = "vins"
    __table_args__ = (
        CheckConstraint("length(code) = 17", name="check_vin_length"),
        # the alphabet check needs pattern matching, which each engine spells differently
        CheckConstraint("code NOT GLOB '*[^A-HJ-NPR-Z0-9]*'", name="check_vin_alphabet").ddl_if(dialect="sqlite"),
        CheckConstraint("code ~ '^[A-HJ-NPR-Z0-9]{17}$'", name="check_vin_format").ddl_if(dialect="postgresql"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(17), nullable=False, unique=True, index=True)
    # when the VIN was captured, as reported by the client
    date_created = Column(DateTime, nullable=False)
    user_agent = Column(Text)
    ip_address = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<VinRecord id={self.id} code={self.code}>"


def init_db():
    """
    Create the tables if they do not exist yet.
    """
    Base.metadata.create_all(bind=engine)


def get_db():
    """
    Dependency function to get a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

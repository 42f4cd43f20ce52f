import uuid

from sqlalchemy import JSON, String, create_engine
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base, sessionmaker

from aida.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Portable column types: native UUID/JSONB on Postgres, plain types elsewhere.
IdType = String(36).with_variant(UUID(as_uuid=False), "postgresql")
JSONType = JSON().with_variant(JSONB, "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())

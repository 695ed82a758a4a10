from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from catalog_sync.config import DATABASE_URL


class Base(DeclarativeBase):
	pass


def build_engine(url: str | None = None) -> Engine:
	"""Engine for ``url`` (defaults to DATABASE_URL); sqlite gets cross-thread access."""
	url = url or DATABASE_URL
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
	# All mapped modules must be imported before create_all.
	import catalog_sync.models.db  # noqa: F401
	Base.metadata.create_all(bind=engine)

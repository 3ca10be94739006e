from sqlmodel import SQLModel, create_engine, Session

from .config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)


def get_session():
    with Session(engine) as session:
        yield session


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)

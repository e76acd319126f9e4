from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from dispatch_api.config import DATABASE_URL

Base = declarative_base()


def build_engine(url: str):
    # SQLite 연결은 threadpool 에서 실행되는 핸들러 간에 공유된다
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# 데이터베이스 세션 의존성
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

"""DB 엔진/세션 생성.

엔진은 서비스의 lifespan(컴포지션 루트)에서 한 번 만들고 StateStore에 넘긴다.
모듈 전역 커넥션을 두지 않는다.
"""

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import model.image  # noqa: F401  테이블 등록


def build_engine(database_url: str, echo: bool = False):
    """DATABASE_URL로 엔진을 만든다.

    in-memory SQLite("sqlite://")는 StaticPool을 사용해야 모든 커넥션이
    같은 DB를 공유한다. (워커 스레드와 헬스체크 스레드가 함께 접근)
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_db_and_tables(engine) -> None:
    SQLModel.metadata.create_all(engine)

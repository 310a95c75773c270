from trust_safety.db.connection import (
    Base,
    BigIntPK,
    JSONType,
    build_engine,
    check_db_health,
    get_db,
    get_engine,
    get_sessionmaker,
)

__all__ = ["Base", "BigIntPK", "JSONType", "build_engine", "get_engine", "get_sessionmaker", "get_db", "check_db_health"]

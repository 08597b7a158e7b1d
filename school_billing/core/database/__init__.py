from school_billing.core.database.session import async_session, engine, get_db
from school_billing.core.database.base import Base, BaseModel, BigIntPK

__all__ = ["async_session", "engine", "get_db", "Base", "BaseModel", "BigIntPK"]

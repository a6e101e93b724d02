from coachforge.db.database import Base, async_session_maker, init_db

__all__ = ["Base", "async_session_maker", "init_db"]

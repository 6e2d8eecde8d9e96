"""Fixed-window rate limit counters for the database backend."""

from sqlmodel import Field, SQLModel


class RateLimitRecord(SQLModel, table=True):
    """Counter for one rate-limit identifier."""

    __tablename__ = "rate_limits"

    identifier: str = Field(primary_key=True)  # e.g. "publish:ip:203.0.113.7"
    count: int = Field(default=1)
    reset_at: float  # epoch seconds

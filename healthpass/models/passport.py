from sqlalchemy import Table, MetaData, Column, Integer, String, DateTime
from sqlalchemy import func

# Health passports table using SQLAlchemy Core (no ORM class)
metadata = MetaData()

health_passports = Table(
    "health_passports",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("holder_name", String(100), nullable=False),
    Column("blood_type", String(8), nullable=False),
    Column("passport_number", String(32), nullable=False, unique=True),
    # Stored as naive UTC
    Column("expiry_date", DateTime, nullable=True),
    Column("status", String(16), nullable=False, server_default="active"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

def create_tables(engine):
    """Create the health_passports table in the target database."""
    metadata.create_all(engine)


__all__ = ["health_passports", "metadata", "create_tables"]

# backend/create_tables.py
from backend.database import build_engine, create_tables
from backend.config import get_settings
from backend.logging_config import configure_logging

settings = get_settings()

if __name__ == "__main__":
    configure_logging()
    # echo the DDL so schema changes are visible when run by hand
    engine = build_engine(settings.database_url)
    engine.echo = True
    create_tables(bind=engine)
    print("Tables created or verified.")

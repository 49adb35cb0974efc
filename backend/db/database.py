from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import settings


_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)


if _is_sqlite:
    # Enable WAL mode for better concurrent read performance
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_startup_migrations() -> None:
    """Apply lightweight schema fixes for existing SQLite databases."""
    if not _is_sqlite:
        return
    inspector = inspect(engine)

    def _table_columns(table_name: str) -> set[str]:
        try:
            return {col["name"] for col in inspector.get_columns(table_name)}
        except NoSuchTableError:
            return set()

    challenge_columns = _table_columns("challenges")
    progress_columns = _table_columns("daily_progress")
    preference_columns = _table_columns("notification_preferences")
    if not challenge_columns and not progress_columns and not preference_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if challenge_columns:
        if "duration_days" not in challenge_columns:
            alter_statements.append("ALTER TABLE challenges ADD COLUMN duration_days INTEGER DEFAULT 75")
        if "description" not in challenge_columns:
            alter_statements.append("ALTER TABLE challenges ADD COLUMN description TEXT")
    if progress_columns:
        if "day_number" not in progress_columns:
            alter_statements.append("ALTER TABLE daily_progress ADD COLUMN day_number INTEGER")
        if "notes" not in progress_columns:
            alter_statements.append("ALTER TABLE daily_progress ADD COLUMN notes TEXT")
    if preference_columns:
        if "last_notification_sent_at" not in preference_columns:
            alter_statements.append(
                "ALTER TABLE notification_preferences ADD COLUMN last_notification_sent_at DATETIME"
            )
        if "achievement_alerts" not in preference_columns:
            alter_statements.append(
                "ALTER TABLE notification_preferences ADD COLUMN achievement_alerts BOOLEAN DEFAULT 1"
            )

    with engine.begin() as conn:
        for stmt in alter_statements:
            conn.execute(text(stmt))

        if challenge_columns:
            conn.execute(text("UPDATE challenges SET duration_days = COALESCE(duration_days, 75)"))
        if progress_columns:
            # Backfill day numbers for rows written before the column existed.
            conn.execute(text(
                """
                UPDATE daily_progress
                SET day_number = CAST(
                    julianday(date) - julianday(
                        (SELECT start_date FROM challenges WHERE challenges.id = daily_progress.challenge_id)
                    ) AS INTEGER
                ) + 1
                WHERE day_number IS NULL
                """
            ))
            # Keep only the newest row per challenge day before enforcing uniqueness.
            conn.execute(text(
                """
                DELETE FROM daily_progress
                WHERE id NOT IN (
                    SELECT MAX(id)
                    FROM daily_progress
                    GROUP BY challenge_id, date
                )
                """
            ))
            conn.execute(text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_daily_progress_unique_day
                ON daily_progress (challenge_id, date)
                """
            ))
        if preference_columns:
            conn.execute(text(
                "UPDATE notification_preferences SET achievement_alerts = COALESCE(achievement_alerts, 1)"
            ))

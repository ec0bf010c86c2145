from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


def ensure_runtime_schema(engine: Engine) -> None:
    # Lightweight runtime migration for databases created before level/privacy columns existed.
    with engine.begin() as connection:
        inspector = inspect(connection)
        tables = set(inspector.get_table_names())

        if "users" in tables:
            user_columns = {column["name"] for column in inspector.get_columns("users")}
            if "role" not in user_columns:
                connection.execute(
                    text("ALTER TABLE users ADD COLUMN role VARCHAR(20) NOT NULL DEFAULT 'user'")
                )
            if "level" not in user_columns:
                connection.execute(
                    text("ALTER TABLE users ADD COLUMN level INTEGER NOT NULL DEFAULT 1")
                )

        if "chat_messages" in tables:
            message_columns = {
                column["name"] for column in inspector.get_columns("chat_messages")
            }
            if "media_data" not in message_columns:
                connection.execute(text("ALTER TABLE chat_messages ADD COLUMN media_data TEXT"))
            if "user_level" not in message_columns:
                connection.execute(
                    text("ALTER TABLE chat_messages ADD COLUMN user_level INTEGER NOT NULL DEFAULT 1")
                )
            if "is_private" not in message_columns:
                connection.execute(
                    text(
                        "ALTER TABLE chat_messages ADD COLUMN is_private BOOLEAN NOT NULL DEFAULT 0"
                    )
                )
            connection.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS idx_chat_messages_room_id ON chat_messages(room_id)"
                )
            )

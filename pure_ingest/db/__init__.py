"""SQLite persistence: connection, schema, migrations, repositories."""

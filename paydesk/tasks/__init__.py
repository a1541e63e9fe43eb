"""PayDesk background tasks."""

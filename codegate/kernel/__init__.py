"""Persistence kernel: SQLAlchemy models shared by the engines."""

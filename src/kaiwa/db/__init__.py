"""Database layer for the conversation engine."""

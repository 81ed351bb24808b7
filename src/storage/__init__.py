"""Storage layer for the alert engine's relational store."""

from src.storage.database import Database

__all__ = ["Database"]

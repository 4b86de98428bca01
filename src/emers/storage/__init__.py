"""Durable event storage."""

from emers.storage.database import EventDatabase

__all__ = ["EventDatabase"]

"""Repository implementations."""

from src.persistence.repositories.state_repo import StateRepository

__all__ = ["StateRepository"]

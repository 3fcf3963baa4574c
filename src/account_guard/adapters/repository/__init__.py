"""Repository adapters - Database and in-memory implementations."""

from .memory import MemoryDeviceRepository, MemoryVerificationRepository
from .postgres import PostgresDeviceRepository, PostgresVerificationRepository, run_migrations

__all__ = [
    "MemoryDeviceRepository",
    "MemoryVerificationRepository",
    "PostgresDeviceRepository",
    "PostgresVerificationRepository",
    "run_migrations",
]

"""Database persistence layer for swflow.

This module provides SQLAlchemy models, repositories and an instance store
for persisting workflow definitions and instance records.
"""

from __future__ import annotations

from swflow.db.models import WorkflowDefinitionModel, WorkflowInstanceModel
from swflow.db.repositories import WorkflowDefinitionRepository, WorkflowInstanceRepository
from swflow.db.store import SQLAlchemyInstanceStore

__all__ = [
    "SQLAlchemyInstanceStore",
    "WorkflowDefinitionModel",
    "WorkflowDefinitionRepository",
    "WorkflowInstanceModel",
    "WorkflowInstanceRepository",
]

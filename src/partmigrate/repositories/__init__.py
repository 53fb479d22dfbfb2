"""
Repository implementations for partmigrate.

This module provides persistence for:

- **Tasks**: Migration tasks and the analyzer's read-only records
- **Execution log**: Append-only audit trail of every planned or issued step
- **ILM**: Templates, lifecycle policies and threshold profiles

Each repository type provides:
- A Protocol (interface) defining the contract
- Oracle implementation for production use
- In-memory implementation for testing
"""

from partmigrate.repositories.execution_log import (
    ExecutionLogRepository,
    InMemoryExecutionLogRepository,
    OracleExecutionLogRepository,
)
from partmigrate.repositories.ilm import (
    ILMRepository,
    InMemoryILMRepository,
    OracleILMRepository,
)
from partmigrate.repositories.tasks import (
    InMemoryTaskRepository,
    OracleTaskRepository,
    TaskRepository,
)

__all__ = [
    # Tasks
    "TaskRepository",
    "OracleTaskRepository",
    "InMemoryTaskRepository",
    # Execution log
    "ExecutionLogRepository",
    "OracleExecutionLogRepository",
    "InMemoryExecutionLogRepository",
    # ILM
    "ILMRepository",
    "OracleILMRepository",
    "InMemoryILMRepository",
]

"""Core modules for rpmts"""

from .config import TransactionConfig
from .database import PackageDatabase
from .element import Dependency, TransactionElement
from .flags import (AdmitResult, ElementType, FileAction, Goal, ProbFilter,
                    TransactionType, TransFlags, VSFlags)
from .notify import CallbackType
from .problems import Problem, ProblemSet, ProblemType
from .solver import DatabaseSolver, SolveResult
from .transaction import TransactionSet

__all__ = [
    'TransactionConfig', 'PackageDatabase', 'Dependency', 'TransactionElement',
    'AdmitResult', 'ElementType', 'FileAction', 'Goal', 'ProbFilter',
    'TransactionType', 'TransFlags', 'VSFlags', 'CallbackType',
    'Problem', 'ProblemSet', 'ProblemType', 'DatabaseSolver', 'SolveResult',
    'TransactionSet',
]

"""TransactionSet behaviour, one mixin per phase."""

from .admission import AdmissionMixin
from .check import CheckMixin
from .order import OrderMixin
from .run import ElementExecutor, RunMixin

__all__ = ['AdmissionMixin', 'CheckMixin', 'OrderMixin', 'RunMixin', 'ElementExecutor']

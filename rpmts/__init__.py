"""
rpmts - Transaction engine for RPM package management

Coordinates multi-package install/erase transactions:
- Element admission with same-name deduplication
- Dependency checking with pluggable solvers
- Dependency ordering with cycle breaking
- Disk space accounting and rollback scoring
"""

__version__ = "0.3.0"
__author__ = "Mageia Community"

"""
Automation Services

Pipeline driver plus the periodic scheduler that runs it.
"""

from .scheduler import AutomationScheduler
from .service import AutomationService

__all__ = ["AutomationScheduler", "AutomationService"]

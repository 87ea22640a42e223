# Models module
from reelsmith.models.project import Project
from reelsmith.models.credits import UserCredits, CreditUsageLog

__all__ = ["Project", "UserCredits", "CreditUsageLog"]

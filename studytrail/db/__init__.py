# SQLAlchemy storage for trails, completion flags and revisions
from .models import Base, RevisionRow, TrailCompletionRow, WeeklyTrailRow

__all__ = [
    "Base",
    "RevisionRow",
    "TrailCompletionRow",
    "WeeklyTrailRow",
]

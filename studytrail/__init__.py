"""study-trail: weekly study-trail scheduling engine."""

__version__ = "1.0.0"

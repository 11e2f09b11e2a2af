"""Zero-G planner core: task/gamification state engine with optimistic remote sync."""

__version__ = "0.1.0"

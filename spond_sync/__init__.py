"""
spond_sync - Two-way event synchronization between a club database and Spond.

Reconciles locally owned events with events on the Spond team-management
platform, importing remote events and attendance, exporting local events,
and warning about probable duplicates with a fuzzy matcher.
"""

__version__ = "0.3.0"

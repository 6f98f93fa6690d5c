"""
Ennoblement Watcher - Automated village ownership change notifications.

This package provides functionality to:
- Fetch the public ennoblement statistics page on a schedule
- Parse the HTML event table into typed ennoblement records
- Filter events by faction and coordinate bounds
- Detect what is new since the previous poll cycle
- Notify configured recipients about matching events
"""

__version__ = "1.0.0"
__author__ = "Ennoblement Watcher Team"

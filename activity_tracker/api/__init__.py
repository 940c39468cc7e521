"""
API module for the activity tracker.

Provides REST endpoints for:
- Per-controller lifecycle status
- Operator actions (force-refresh, mark for removal)
- System status
"""

from activity_tracker.api.subjects import subjects_bp

__all__ = ['subjects_bp']

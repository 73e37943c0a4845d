"""
Services layer - business logic for the report lifecycle.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Guards (status, ownership, station scope) are checked here
- Notifications are best-effort side effects after the primary write
"""

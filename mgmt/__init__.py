"""
MGMT (Management Console): the flow admin backend

User-facing control service over the flow API.
Responsibilities:
- JSON console API (process groups, controller services, catalogs)
- User to process group mappings (console.db)
- Per-user resource sessions with background refresh
"""

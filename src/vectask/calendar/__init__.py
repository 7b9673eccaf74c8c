"""
Calendar subsystem.

Components:
- events.py: task -> event body, ownership marker
- google_client.py: async Google Calendar v3 client (httpx)
- sync.py: reconciler deciding create / update / delete per task
- credentials.py: bearer token provider
"""

"""
Core layer.

Components:
- errors.py: error taxonomy (validation / backend / sync / integrity)
- ports.py: Protocols for the backend, calendar client, credentials, preferences
- prefs.py: StoreConfig + JSON-file preferences
- state.py: AppState and the background engine loop
"""

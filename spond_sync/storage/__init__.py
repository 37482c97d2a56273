"""
spond_sync.storage - SQLite persistence for teams, events and sync state.
"""

"""
spond_sync.sync - Event synchronization

Event models, the team-link registry, the fuzzy matcher, the import,
export and attendance pipelines, previews and the sync engine.
"""

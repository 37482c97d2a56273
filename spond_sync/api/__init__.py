"""
spond_sync.api - Spond platform client

Session login, group and event listing, event create/update and
attendance fetch.
"""

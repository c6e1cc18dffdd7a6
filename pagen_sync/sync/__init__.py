"""
pagen_sync.sync - Import engine

Incremental import of external records into the local entity store.
"""

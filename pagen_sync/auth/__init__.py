"""
pagen_sync.auth - Google OAuth handling
"""

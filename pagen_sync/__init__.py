"""
pagen_sync - Incremental import of Gmail, Calendar and Contacts into a
local personal CRM store.
"""

__version__ = "0.1.0"

"""
Outreach Sync: adaptive LinkedIn dataset synchronization service.
"""

__version__ = "0.1.0"

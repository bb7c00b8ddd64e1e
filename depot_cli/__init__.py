"""
depot-cli: versioned branch installs driven by DepotDownloader.
"""

__version__ = "0.4.0"

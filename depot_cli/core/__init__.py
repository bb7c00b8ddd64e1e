"""
Core engine: driving DepotDownloader and managing installed versions.

`DepotDownloaderOrchestrator` owns the single downloader child process,
`BranchInstaller` turns a manifest lookup plus a download into a recorded
version directory, and `MigrationEngine` rewrites legacy flat installs.
"""

"""Synchronization core — diffing local and remote flags and managing drafts.

This package provides:
- DiffEngine: minimal create/update operations, never deletes
- DraftController: the stage -> discard/publish lifecycle of a universe draft
- SyncOrchestrator: the user-facing download/upload/draft operations
"""

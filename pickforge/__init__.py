"""PickForge backend: odds feed, pick locking, result sync and slip import."""

"""Multi-channel notification dispatch core."""

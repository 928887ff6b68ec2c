"""Domain packages for the sync layer."""

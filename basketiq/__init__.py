"""Point-in-time reorder features and basket analytics for grocery order logs."""

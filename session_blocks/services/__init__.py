"""Block assignment, grouping and editing services."""

"""Developer tools for replaying recorded routes."""

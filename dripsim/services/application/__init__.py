"""Application services owned by the ServiceContainer."""

"""Co-op park multiplayer synchronization."""

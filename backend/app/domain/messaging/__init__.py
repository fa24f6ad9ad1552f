"""Role-scoped conversations, direct messages and their delivery."""

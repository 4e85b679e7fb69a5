"""Command-line tools for the avatar knowledge base."""

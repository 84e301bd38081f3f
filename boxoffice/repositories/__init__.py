"""Database repositories for the boxoffice service."""

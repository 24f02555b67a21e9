"""AI request building, provider adapters, and error taxonomy."""

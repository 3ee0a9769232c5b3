"""Core lock components: settings, error codes, lock implementations."""

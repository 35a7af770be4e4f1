"""Image attachment encoding."""

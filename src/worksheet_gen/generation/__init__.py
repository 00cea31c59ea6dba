"""Task generation pipeline: planning, provider calls, validation and repair."""

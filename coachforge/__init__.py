"""AI program generation and streaming job runtime for a coaching platform."""

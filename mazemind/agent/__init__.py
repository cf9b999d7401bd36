"""Agent cognition: memory, planning, generation and the per-agent engine."""

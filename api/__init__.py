"""HTTP API for the Talent Signals Engine."""

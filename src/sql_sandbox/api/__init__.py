"""HTTP API for the SQL sandbox."""

"""HTTP API for TeamRAG."""

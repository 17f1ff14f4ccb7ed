"""Adapter layer — codec, verifying HTTP transport and TLS chain harvester."""

"""Command line interface for SAMLGate."""

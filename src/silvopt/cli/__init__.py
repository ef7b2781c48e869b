"""Command line interface for silvopt."""

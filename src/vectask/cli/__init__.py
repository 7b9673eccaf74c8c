"""Command line interface: bootstrap, slash commands, entry point."""

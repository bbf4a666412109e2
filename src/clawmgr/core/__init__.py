"""Core: config, platform document store, command runner, errors."""

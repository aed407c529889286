"""Process lifecycle for the crank: signal handling, run loop, exit codes."""

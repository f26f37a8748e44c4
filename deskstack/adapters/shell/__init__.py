"""Shell-level adapters: subprocess runner, commands, filesystem."""

"""Reference targets for exercising the engine."""

"""Infrastructure adapters: cache, single-flight, remote store, push channel."""

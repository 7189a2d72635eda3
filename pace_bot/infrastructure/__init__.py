"""Infrastructure adapters: configuration, auth, storage and transports."""

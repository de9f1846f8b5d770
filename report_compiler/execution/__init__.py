"""Query execution: server-side service, client-side runner and transports."""

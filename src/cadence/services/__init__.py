"""Calendar backends and transports."""

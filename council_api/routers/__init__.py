"""HTTP and WebSocket routers for the council API."""

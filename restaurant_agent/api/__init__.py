"""HTTP routers for the dashboard and the browser voice session."""

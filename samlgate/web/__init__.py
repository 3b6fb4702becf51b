"""HTTP front end of the gateway."""

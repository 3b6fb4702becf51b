"""Key and certificate handling."""

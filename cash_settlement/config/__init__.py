"""Settlement configuration loading."""

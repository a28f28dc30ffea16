"""Built-in schema extensions, always loaded."""

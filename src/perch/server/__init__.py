"""ASGI server glue: request handling, error mapping, response sending."""

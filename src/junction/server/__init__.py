"""ASGI glue — turns ASGI messages into requests and finished responses back into ASGI."""

"""HTTP surface: the chat route, request models and error handlers."""

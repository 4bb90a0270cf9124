"""Interactive command-line client for the chat relay."""

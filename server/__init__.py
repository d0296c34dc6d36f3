"""Dynamic HTTP servers for custom APIs and the admin API that controls them."""

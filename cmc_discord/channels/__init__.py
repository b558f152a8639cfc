"""Platform channels."""

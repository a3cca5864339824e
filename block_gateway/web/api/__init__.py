"""block_gateway API package."""

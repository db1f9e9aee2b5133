"""Remote execution plumbing shared by providers."""

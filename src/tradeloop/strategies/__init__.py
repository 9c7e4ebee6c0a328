"""Shipped strategies, discovered by the strategy registry."""

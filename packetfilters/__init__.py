"""Composable filters for UDP packets: debug logging, byte concatenation,
firewall, load balancing, rate limiting and token routing."""

__version__ = "0.1.0"
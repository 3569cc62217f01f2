"""Launchpad: deploys generated sites and companion apps to GitHub, Railway and Cloudflare."""

__version__ = "0.1.0"

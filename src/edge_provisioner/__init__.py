"""Terraform-style plan/apply for load-balancing, CDN and DNS resources."""

__version__ = "0.1.0"

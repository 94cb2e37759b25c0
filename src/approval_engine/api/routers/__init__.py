"""
API routers
"""

from . import templates, instances, metrics, monitoring

__all__ = ["templates", "instances", "metrics", "monitoring"]

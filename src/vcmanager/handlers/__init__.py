"""kopf event handlers for the VirtualCluster operator."""

from . import virtualcluster_handler

__all__ = ["virtualcluster_handler"]

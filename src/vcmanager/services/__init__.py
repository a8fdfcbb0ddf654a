"""Reconcile building blocks for the VirtualCluster operator."""

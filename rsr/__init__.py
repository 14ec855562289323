"""Replica Set Reconciler (RSR).

Single-host control loop that keeps a fixed number of labeled container
replicas running against a Docker engine:
 - replaces containers that exit, with per-slot crash-loop backoff
 - trims excess replicas after a scale-down
 - rolls a new version label out one replica at a time

State is rebuilt from the engine's container labels on every pass.
"""

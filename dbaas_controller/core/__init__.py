"""
Core cluster state handling.

Maps the states reported by the database operators to the single
ClusterState exposed by the API.
"""
from dbaas_controller.core.cluster_state import AppState, ClusterState, ClusterStateClassifier

__all__ = [
    "AppState",
    "ClusterState",
    "ClusterStateClassifier",
]

"""
Cluster state classification.

Both Percona operators report their own application state in
``status.state`` of the custom resource. This module maps those values to the
single ClusterState exposed by the API.

States:
- INVALID: operator reported "unknown", or the state could not be derived
- CHANGING: cluster is being created, resized or restarted
- READY: all components report ready
- FAILED: operator reported an error
- DELETING: custom resource is gone but pods still exist
- PAUSED: cluster is suspended
- UPGRADING: pods run a different image than the custom resource asks for

Usage:
    >>> ClusterStateClassifier.classify("ready")
    <ClusterState.READY: 'ready'>
    >>> ClusterStateClassifier.classify("error", ["ready", "initializing", "ready"])
    <ClusterState.CHANGING: 'changing'>
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)


class ClusterState(str, Enum):
    """Cluster states exposed to API clients"""
    INVALID = "invalid"
    CHANGING = "changing"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"
    PAUSED = "paused"
    UPGRADING = "upgrading"


class AppState(str, Enum):
    """Application states reported by the operators"""
    UNKNOWN = "unknown"
    INITIALIZING = "initializing"
    PENDING = "pending"
    PAUSED = "paused"
    STOPPING = "stopping"
    READY = "ready"
    ERROR = "error"


# Lowest first. Used when a component-level minimum replaces the aggregate.
SEVERITY_ORDER: List[ClusterState] = [
    ClusterState.INVALID,
    ClusterState.CHANGING,
    ClusterState.FAILED,
    ClusterState.READY,
]


class ClusterStateClassifier:
    """
    Maps operator application states to ClusterState.

    All methods are pure; the Upgrading check needs pod data and is applied
    by the callers through ``resolve_upgrading``.
    """

    APP_STATES: Dict[AppState, ClusterState] = {
        AppState.UNKNOWN: ClusterState.INVALID,
        AppState.INITIALIZING: ClusterState.CHANGING,
        AppState.PENDING: ClusterState.CHANGING,
        AppState.STOPPING: ClusterState.CHANGING,
        AppState.PAUSED: ClusterState.PAUSED,
        AppState.READY: ClusterState.READY,
        AppState.ERROR: ClusterState.FAILED,
    }

    @classmethod
    def map_app_state(cls, state: Optional[str]) -> ClusterState:
        """
        Map a single operator state.

        Unrecognized values are treated as CHANGING so that listing keeps
        working with newer operators.
        """
        try:
            app_state = AppState((state or "").lower())
        except ValueError:
            logger.warning("unrecognized_cluster_state", state=state, fallback=ClusterState.CHANGING.value)
            return ClusterState.CHANGING
        return cls.APP_STATES[app_state]

    @staticmethod
    def severity(state: ClusterState) -> int:
        """Rank of a state in SEVERITY_ORDER; states outside the order rank highest."""
        try:
            return SEVERITY_ORDER.index(state)
        except ValueError:
            return len(SEVERITY_ORDER)

    @classmethod
    def lowest(cls, states: Sequence[ClusterState]) -> ClusterState:
        """Return the least advanced state, ties resolved by input order."""
        return min(states, key=cls.severity)

    @classmethod
    def classify(
        cls,
        operator_state: Optional[str],
        subcomponent_states: Optional[Sequence[str]] = None,
        paused: bool = False,
    ) -> ClusterState:
        """
        Derive the cluster state.

        Args:
            operator_state: ``status.state`` of the custom resource
            subcomponent_states: replica set member states, when the operator
                reports them (PSMDB only)
            paused: ``spec.pause`` of the custom resource

        Returns:
            Derived ClusterState
        """
        state = (operator_state or AppState.UNKNOWN.value).lower()

        if state == AppState.UNKNOWN.value:
            return ClusterState.INVALID

        # Operators before 1.9 stay "ready" while paused
        if state == AppState.PAUSED.value or (paused and state == AppState.READY.value):
            return ClusterState.PAUSED

        if subcomponent_states is not None and state == AppState.ERROR.value:
            # The operator reports "error" while a new replica set has fewer
            # members than it needs to form; trust the members instead.
            if not subcomponent_states:
                return ClusterState.INVALID
            return cls.lowest([cls.map_app_state(s) for s in subcomponent_states])

        return cls.map_app_state(state)

    @staticmethod
    def resolve_upgrading(state: ClusterState, images_match: Optional[bool]) -> ClusterState:
        """
        Turn CHANGING into UPGRADING when pods run a different image.

        ``images_match`` is None when the pod check itself failed.
        """
        if state != ClusterState.CHANGING:
            return state
        if images_match is None:
            return ClusterState.INVALID
        return ClusterState.CHANGING if images_match else ClusterState.UPGRADING

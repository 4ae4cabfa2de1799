"""Workflow graph ordering and branch activation."""

from collections import deque
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from common.errors import ConfigurationError, WorkflowCycleError
from workflow.models import WorkflowEdge, WorkflowNode


def topological_sort(
    nodes: Sequence[WorkflowNode], edges: Iterable[WorkflowEdge]
) -> List[WorkflowNode]:
    """Order nodes so every edge points forward (Kahn's algorithm).

    Ties are broken by declaration order, so the result is deterministic.

    Raises:
        ConfigurationError: duplicate node ids or an edge to an unknown node.
        WorkflowCycleError: the graph has a cycle.
    """
    position: Dict[str, int] = {}
    for index, node in enumerate(nodes):
        if node.id in position:
            raise ConfigurationError(f"Duplicate workflow node id '{node.id}'")
        position[node.id] = index

    indegree: Dict[str, int] = {node.id: 0 for node in nodes}
    successors: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in position:
                raise ConfigurationError(
                    f"Edge {edge.source} -> {edge.target} references unknown node '{endpoint}'"
                )
        successors[edge.source].append(edge.target)
        indegree[edge.target] += 1

    ready = deque(node.id for node in nodes if indegree[node.id] == 0)
    ordered: List[str] = []
    while ready:
        node_id = ready.popleft()
        ordered.append(node_id)
        released = []
        for target in successors[node_id]:
            indegree[target] -= 1
            if indegree[target] == 0:
                released.append(target)
        # Keep declaration order among nodes released at the same time.
        for target in sorted(released, key=position.__getitem__):
            ready.append(target)

    if len(ordered) != len(nodes):
        raise WorkflowCycleError(node_id for node_id, degree in indegree.items() if degree > 0)

    return [nodes[position[node_id]] for node_id in ordered]


def is_node_active(
    node_id: str,
    incoming: Mapping[str, Sequence[WorkflowEdge]],
    skipped: Set[str],
    selected_branches: Mapping[str, str],
) -> bool:
    """Return False when every inbound edge is dead.

    An edge is dead when its source was skipped, or when its source chose a branch
    and the edge carries a different ``source_handle``. Nodes without inbound
    edges are always active.
    """
    edges = incoming.get(node_id, ())
    if not edges:
        return True
    for edge in edges:
        if edge.source in skipped:
            continue
        branch = selected_branches.get(edge.source)
        if edge.source_handle is not None and branch is not None and edge.source_handle != branch:
            continue
        return True
    return False

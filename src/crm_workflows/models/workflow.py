"""
Workflow definition models
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Union
from enum import Enum
from uuid import uuid4


class NodeKind(Enum):
    """Node kind"""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    WAIT = "wait"


class ActionType(Enum):
    """Side effect performed by a node"""
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_TASK = "create_task"
    UPDATE_RECORD = "update_record"
    CONDITION = "condition"
    CALL_WEBHOOK = "call_webhook"
    WAIT = "wait"


# Node type names used by the graph editor
ACTION_TYPE_ALIASES: Dict[str, ActionType] = {
    "email": ActionType.SEND_EMAIL,
    "sms": ActionType.SEND_SMS,
    "task": ActionType.CREATE_TASK,
    "update-lead": ActionType.UPDATE_RECORD,
    "update_lead": ActionType.UPDATE_RECORD,
    "webhook": ActionType.CALL_WEBHOOK,
}


def resolve_action_type(value: Optional[str]) -> Optional[ActionType]:
    """Map a stored action type string to the enum, None when unrecognized"""
    if not value:
        return None
    try:
        return ActionType(value)
    except ValueError:
        return ACTION_TYPE_ALIASES.get(value)


@dataclass
class Node:
    """Workflow node"""
    id: str
    kind: NodeKind
    action_type: Union[ActionType, str, None] = None
    config: Dict[str, Any] = field(default_factory=dict)
    name: str = ""

    def __post_init__(self):
        if isinstance(self.action_type, str):
            self.action_type = resolve_action_type(self.action_type) or self.action_type

        if self.action_type is None:
            if self.kind == NodeKind.CONDITION:
                self.action_type = ActionType.CONDITION
            elif self.kind == NodeKind.WAIT:
                self.action_type = ActionType.WAIT

    @property
    def is_trigger(self) -> bool:
        return self.kind == NodeKind.TRIGGER

    @property
    def is_wait(self) -> bool:
        return self.kind == NodeKind.WAIT or self.action_type == ActionType.WAIT

    @property
    def is_condition(self) -> bool:
        return self.kind == NodeKind.CONDITION or self.action_type == ActionType.CONDITION

    @property
    def action_name(self) -> str:
        """Action type as stored"""
        if isinstance(self.action_type, ActionType):
            return self.action_type.value
        return self.action_type or ""


@dataclass
class Edge:
    """Workflow edge"""
    id: str = field(default_factory=lambda: str(uuid4()))
    source: str = ""
    target: str = ""
    branch_label: Optional[str] = None


@dataclass
class Workflow:
    """Workflow definition"""
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    is_active: bool = True
    description: Optional[str] = None

    def get_node(self, node_id: str) -> Optional[Node]:
        """Look up a node by id"""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.is_trigger]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        """Edges leaving a node, in definition order"""
        return [edge for edge in self.edges if edge.source == node_id]

    def trigger_event(self) -> Optional[str]:
        """Event name the trigger node listens to"""
        for node in self.trigger_nodes():
            return node.config.get("event") or node.config.get("type")
        return None

    def validate(self) -> List[str]:
        """Check the graph for structural errors"""
        errors = []

        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            errors.append("Duplicate node IDs found")

        triggers = self.trigger_nodes()
        if not triggers:
            errors.append("Workflow has no trigger node")
        elif len(triggers) > 1:
            errors.append(f"Workflow has {len(triggers)} trigger nodes, expected exactly one")

        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge source '{edge.source}' not found in nodes")
            if edge.target not in node_ids:
                errors.append(f"Edge target '{edge.target}' not found in nodes")

        for node in self.nodes:
            if node.is_condition:
                continue
            outgoing = self.outgoing_edges(node.id)
            if len(outgoing) > 1:
                errors.append(
                    f"Node '{node.id}' has {len(outgoing)} outgoing edges, expected at most one"
                )

        if self._has_cycle():
            errors.append("Workflow graph contains cycles")

        return errors

    def _has_cycle(self) -> bool:
        """Detect cycles with a topological sort"""
        from collections import defaultdict, deque

        adj = defaultdict(list)
        in_degree = defaultdict(int)

        for node in self.nodes:
            in_degree[node.id] = 0

        for edge in self.edges:
            adj[edge.source].append(edge.target)
            in_degree[edge.target] += 1

        queue = deque([node_id for node_id in in_degree if in_degree[node_id] == 0])
        visited = 0

        while queue:
            node_id = queue.popleft()
            visited += 1

            for neighbor in adj[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        return visited != len(in_degree)

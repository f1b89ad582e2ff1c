"""
Workflow document parser
"""
import yaml
import json
from typing import Dict, Any, List, Union
from pathlib import Path

from jsonschema import Draft7Validator

from ..models.workflow import Workflow, Node, Edge, NodeKind
from ..exceptions import WorkflowParseError


WORKFLOW_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["nodes"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "is_active": {"type": "boolean"},
        "nodes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "kind": {"enum": [kind.value for kind in NodeKind]},
                    "type": {"type": "string"},
                    "action_type": {"type": ["string", "null"]},
                    "config": {"type": "object"},
                    "data": {"type": "object"}
                }
            }
        },
        "edges": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "branch_label": {"type": ["string", "null"]}
                }
            }
        }
    }
}

# Node ``type`` values that name a kind rather than an action
_KIND_TYPES = {
    "trigger": NodeKind.TRIGGER,
    "condition": NodeKind.CONDITION,
    "wait": NodeKind.WAIT,
}


class WorkflowParser:
    """Turns YAML/JSON documents or dicts into Workflow objects"""

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }
        self.validator = Draft7Validator(WORKFLOW_SCHEMA)

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> Workflow:
        """
        Parse a workflow definition.

        Args:
            source: file path, YAML/JSON text, or an already decoded dict.
                A top-level ``workflow`` key is unwrapped.

        Returns:
            Workflow: the parsed definition (not yet graph-validated)
        """
        if isinstance(source, dict):
            return self._parse_dict(source)

        if isinstance(source, Path) or (isinstance(source, str) and '\n' not in source):
            path = Path(source)
            try:
                is_file = path.is_file()
            except OSError:
                is_file = False
            if is_file:
                return self.parse_file(path)

        if isinstance(source, (str, Path)):
            return self.parse_string(str(source))

        raise WorkflowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Path) -> Workflow:
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        return self._parse_dict(self.parsers[suffix](content))

    def parse_string(self, content: str) -> Workflow:
        # YAML is a superset of JSON
        return self._parse_dict(self._parse_yaml(content))

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}")

    def _parse_dict(self, data: Dict[str, Any]) -> Workflow:
        if not isinstance(data, dict):
            raise WorkflowParseError("Workflow definition must be a mapping")

        if 'workflow' in data:
            data = data['workflow']
        # Definitions saved by the editor keep the graph under ``config``
        if 'nodes' not in data and isinstance(data.get('config'), dict):
            data = {**data, **data['config']}

        errors = self.schema_errors(data)
        if errors:
            raise WorkflowParseError(f"Invalid workflow document: {'; '.join(errors)}")

        workflow_kwargs = {
            'name': data.get('name', ''),
            'description': data.get('description'),
            'is_active': data.get('is_active', True),
            'nodes': [self._parse_node(node_data) for node_data in data.get('nodes', [])],
            'edges': [self._parse_edge(edge_data) for edge_data in data.get('edges') or []],
        }
        if data.get('id'):
            workflow_kwargs['id'] = str(data['id'])

        return Workflow(**workflow_kwargs)

    def schema_errors(self, data: Dict[str, Any]) -> List[str]:
        """JSON Schema violations, formatted as ``path: message``"""
        errors = []
        for error in sorted(self.validator.iter_errors(data), key=lambda e: list(e.path)):
            location = ".".join(str(part) for part in error.path) or "<root>"
            errors.append(f"{location}: {error.message}")
        return errors

    def _parse_node(self, data: Dict[str, Any]) -> Node:
        node_type = data.get('type')

        if data.get('kind'):
            kind = NodeKind(data['kind'])
        else:
            kind = _KIND_TYPES.get(node_type, NodeKind.ACTION)

        action_type = data.get('action_type') or data.get('actionType')
        if action_type is None and node_type and node_type not in ('trigger', 'action'):
            action_type = node_type

        config = data.get('config')
        if config is None:
            config = data.get('data', {})

        return Node(
            id=str(data['id']),
            kind=kind,
            action_type=action_type,
            config=dict(config or {}),
            name=data.get('name', '')
        )

    def _parse_edge(self, data: Dict[str, Any]) -> Edge:
        label = data.get('branch_label', data.get('branchLabel', data.get('sourceHandle', data.get('label'))))
        edge = Edge(
            source=str(data.get('source', data.get('from', data.get('sourceNodeId', '')))),
            target=str(data.get('target', data.get('to', data.get('targetNodeId', '')))),
            branch_label=label
        )
        if data.get('id'):
            edge.id = str(data['id'])
        return edge

    def to_dict(self, workflow: Workflow) -> Dict[str, Any]:
        """Serialize a workflow back into the document form"""
        return {
            'id': workflow.id,
            'name': workflow.name,
            'description': workflow.description,
            'is_active': workflow.is_active,
            'nodes': [
                {
                    'id': node.id,
                    'kind': node.kind.value,
                    'action_type': node.action_name or None,
                    'config': node.config,
                    'name': node.name
                }
                for node in workflow.nodes
            ],
            'edges': [
                {
                    'id': edge.id,
                    'source': edge.source,
                    'target': edge.target,
                    'branch_label': edge.branch_label
                }
                for edge in workflow.edges
            ]
        }

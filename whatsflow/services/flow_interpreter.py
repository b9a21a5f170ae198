# whatsflow/services/flow_interpreter.py
"""
Flow interpreter - walks an authored flow graph one inbound message at a time.

The only state kept per conversation is (flow_id, node_id). A conversation
is meaningfully positioned only at an incomingMessageNode, which waits for
the next inbound text and compares it with its expectedMessage. Every other
node type is emitted on entry and never waited on.

Each node consumes at most one outgoing edge: the first edge whose source is
the node. Graphs with several edges leaving one node are not branched; they
are reported by validate() and the first edge is followed.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from whatsflow.core.exceptions import FlowDataError

log = logging.getLogger("whatsflow.flows")

START_NODE_ID = "start-node"

INPUT_NODE = "input"
MESSAGE_NODE = "messageNode"
WELCOME_MESSAGE_NODE = "welcomeMessageNode"
BUTTON_MESSAGE_NODE = "buttonMessageNode"
INCOMING_MESSAGE_NODE = "incomingMessageNode"

TEXT_NODE_TYPES = (MESSAGE_NODE, WELCOME_MESSAGE_NODE)
MAX_BUTTONS = 3


@dataclass
class Emission:
    """What to send when a node is entered"""
    body: str
    buttons: List[Tuple[str, str]] = field(default_factory=list)  # (title, payload)

    @property
    def is_interactive(self) -> bool:
        return bool(self.buttons)


@dataclass
class FlowNode:
    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return str(self.data.get("message") or "")

    @property
    def expected_message(self) -> str:
        return str(self.data.get("expectedMessage") or "")

    @property
    def buttons(self) -> List[Tuple[str, str]]:
        result = []
        for btn in (self.data.get("buttons") or [])[:MAX_BUTTONS]:
            if not isinstance(btn, dict):
                continue
            title = btn.get("text") or btn.get("title")
            payload = btn.get("payload") or btn.get("id") or title
            if title:
                result.append((str(title), str(payload)))
        return result

    @property
    def is_waiting(self) -> bool:
        return self.type == INCOMING_MESSAGE_NODE

    def emission(self) -> Optional[Emission]:
        """Content sent on entering this node, or None for nodes that send nothing"""
        if self.type in TEXT_NODE_TYPES:
            return Emission(body=self.message)
        if self.type == BUTTON_MESSAGE_NODE:
            return Emission(body=self.message, buttons=self.buttons)
        return None


class FlowGraph:
    """Read-only view over a flow's {"nodes": [...], "edges": [...]} document"""

    def __init__(self, nodes: List[FlowNode], edges: List[Dict[str, str]], flow_id: Optional[int] = None):
        self.flow_id = flow_id
        self._nodes: Dict[str, FlowNode] = {}
        for node in nodes:
            self._nodes.setdefault(node.id, node)
        self._edges = edges
        self._outgoing: Dict[str, List[str]] = {}
        for edge in edges:
            self._outgoing.setdefault(edge["source"], []).append(edge["target"])

    @classmethod
    def from_flow_data(cls, flow_data: Any, flow_id: Optional[int] = None) -> "FlowGraph":
        if not isinstance(flow_data, dict):
            raise FlowDataError(f"Flow {flow_id} has no graph data")
        raw_nodes = flow_data.get("nodes")
        raw_edges = flow_data.get("edges") or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise FlowDataError(f"Flow {flow_id} nodes/edges must be lists")

        nodes = []
        for raw in raw_nodes:
            if not isinstance(raw, dict) or not raw.get("id"):
                raise FlowDataError(f"Flow {flow_id} has a node without id")
            data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
            nodes.append(FlowNode(id=str(raw["id"]), type=str(raw.get("type") or ""), data=data))

        edges = []
        for raw in raw_edges:
            if not isinstance(raw, dict) or not raw.get("source") or not raw.get("target"):
                raise FlowDataError(f"Flow {flow_id} has an edge without source/target")
            edges.append({"source": str(raw["source"]), "target": str(raw["target"])})

        return cls(nodes, edges, flow_id=flow_id)

    def node(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def start_node(self) -> Optional[FlowNode]:
        node = self._nodes.get(START_NODE_ID)
        if node is not None and node.type == INPUT_NODE:
            return node
        return None

    def next_node_id(self, node_id: str) -> Optional[str]:
        targets = self._outgoing.get(node_id) or []
        if len(targets) > 1:
            log.warning(
                f"⚠️ Flow {self.flow_id}: node '{node_id}' has {len(targets)} outgoing edges; "
                f"branching is unsupported, following '{targets[0]}'"
            )
        return targets[0] if targets else None

    def multi_edge_sources(self) -> List[str]:
        return [source for source, targets in self._outgoing.items() if len(targets) > 1]

    def validate(self) -> Tuple[List[str], List[str]]:
        """Return (errors, warnings) for the editor"""
        errors: List[str] = []
        warnings: List[str] = []

        start = self._nodes.get(START_NODE_ID)
        if start is None:
            errors.append(f"Flow must have a '{START_NODE_ID}' node")
        elif start.type != INPUT_NODE:
            errors.append(f"'{START_NODE_ID}' must be of type '{INPUT_NODE}'")
        elif not self._outgoing.get(START_NODE_ID):
            warnings.append(f"'{START_NODE_ID}' has no outgoing edge; the flow sends nothing")

        if sum(1 for n in self._nodes.values() if n.type == INPUT_NODE) > 1:
            errors.append(f"Flow must have exactly one '{INPUT_NODE}' node")

        for edge in self._edges:
            if edge["source"] not in self._nodes:
                errors.append(f"Edge source '{edge['source']}' is not a node")
            if edge["target"] not in self._nodes:
                errors.append(f"Edge target '{edge['target']}' is not a node")
            if edge["target"] == START_NODE_ID:
                errors.append(f"'{START_NODE_ID}' cannot have incoming edges")

        for source in self.multi_edge_sources():
            warnings.append(f"Node '{source}' has several outgoing edges; only the first is followed")

        for node in self._nodes.values():
            if node.type == INCOMING_MESSAGE_NODE and not node.expected_message:
                errors.append(f"Incoming message node '{node.id}' needs an expectedMessage")
            if node.type in TEXT_NODE_TYPES + (BUTTON_MESSAGE_NODE,) and not node.message:
                errors.append(f"Node '{node.id}' has no message text")
            if node.type == BUTTON_MESSAGE_NODE and len(node.data.get("buttons") or []) > MAX_BUTTONS:
                warnings.append(f"Node '{node.id}' has more than {MAX_BUTTONS} buttons; extras are dropped")

        return errors, warnings


# ────────────────────────────────────────────
# Transitions
# ────────────────────────────────────────────

class TransitionKind(str, enum.Enum):
    ADVANCED = "advanced"        # expected text received, moved to target
    REPROMPT = "reprompt"        # wrong text, stay and ask again
    STALLED = "stalled"          # expected text received, but no outgoing edge
    NOT_WAITING = "not_waiting"  # current node is not an incomingMessageNode
    BROKEN = "broken"            # current node or edge target missing from graph


@dataclass
class Transition:
    kind: TransitionKind
    target: Optional[FlowNode] = None
    expected: Optional[str] = None
    reason: Optional[str] = None


def advance(graph: FlowGraph, current_node_id: str, text: str) -> Transition:
    """Apply one inbound text to a conversation positioned at current_node_id"""
    current = graph.node(current_node_id)
    if current is None:
        return Transition(TransitionKind.BROKEN, reason=f"node '{current_node_id}' not in flow")

    if not current.is_waiting:
        return Transition(TransitionKind.NOT_WAITING, reason=f"node '{current.id}' is a {current.type}")

    expected = current.expected_message
    if (text or "").lower() != expected.lower():
        return Transition(TransitionKind.REPROMPT, expected=expected)

    target_id = graph.next_node_id(current.id)
    if target_id is None:
        return Transition(TransitionKind.STALLED, expected=expected, reason=f"node '{current.id}' has no outgoing edge")

    target = graph.node(target_id)
    if target is None:
        return Transition(TransitionKind.BROKEN, reason=f"edge target '{target_id}' not in flow")

    return Transition(TransitionKind.ADVANCED, target=target, expected=expected)


@dataclass
class FlowStart:
    """Result of entering a flow; node is None when start-node has no edge"""
    graph: FlowGraph
    node: Optional[FlowNode] = None


def start(graph: FlowGraph) -> FlowStart:
    """
    Resolve the first content node reached from start-node.

    Raises FlowDataError when the start node or the edge target is missing.
    """
    entry = graph.start_node()
    if entry is None:
        raise FlowDataError(f"Flow {graph.flow_id} has no '{START_NODE_ID}' input node")

    target_id = graph.next_node_id(entry.id)
    if target_id is None:
        return FlowStart(graph)

    target = graph.node(target_id)
    if target is None:
        raise FlowDataError(f"Flow {graph.flow_id}: start edge points at missing node '{target_id}'")
    return FlowStart(graph, target)

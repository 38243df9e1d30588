"""
Core data models for the BlockFlow engine.
These are the universal types shared across all modules.

Blocks and Flows are authored by the editor and stored as JSON; the
engine only reads them. Cards and nodes are closed tagged unions keyed
by their ``type`` field, so a stored payload either validates into one
known variant or is rejected as a whole.
"""
from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


class EditorModel(BaseModel):
    """Accepts the editor's camelCase keys as well as snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class CardType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    GALLERY = "gallery"
    QUICK_REPLY = "quickReply"
    USER_INPUT = "userInput"
    DELAY = "delay"
    GO_TO_BLOCK = "goToBlock"


class NodeType(str, Enum):
    START = "start"
    TEXT = "text"
    IMAGE = "image"
    CARD = "card"
    QUICK_REPLY = "quickReply"
    USER_INPUT = "userInput"
    CONDITION = "condition"
    DELAY = "delay"
    END = "end"


# Postback payload prefix used for buttons that jump straight to a block
BLOCK_PAYLOAD_PREFIX = "BLOCK:"


# ──────────────────────────────────────────────────────────────
#  Bot: the page/bot the engine runs on behalf of
# ──────────────────────────────────────────────────────────────

class Bot(EditorModel):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    page_access_token: Optional[str] = None   # None → gateway runs in mock mode
    platform: str = "facebook"
    is_active: bool = True


# ──────────────────────────────────────────────────────────────
#  Buttons
# ──────────────────────────────────────────────────────────────

class CardButton(EditorModel):
    """Button on a gallery card or a legacy card node."""
    id: Optional[str] = None
    title: str
    kind: Literal["postback", "url", "block"] = Field("postback", alias="type")
    payload: Optional[str] = None             # postback
    url: Optional[str] = None                 # url
    block_id: Optional[str] = None            # block


class QuickReplyButton(EditorModel):
    """Quick reply on a block card: may jump to another block."""
    id: Optional[str] = None
    title: str
    block_id: Optional[str] = None


class FlowQuickReplyButton(EditorModel):
    """Quick reply on a legacy flow node: carries a raw payload."""
    id: Optional[str] = None
    title: str
    payload: str = ""


# ──────────────────────────────────────────────────────────────
#  Block Cards: the sequential execution model
# ──────────────────────────────────────────────────────────────

class TextCard(EditorModel):
    type: Literal["text"] = "text"
    id: Optional[str] = None
    text: str = ""


class ImageCard(EditorModel):
    type: Literal["image"] = "image"
    id: Optional[str] = None
    image_url: str = ""
    caption: Optional[str] = None


class GalleryCard(EditorModel):
    type: Literal["gallery"] = "gallery"
    id: Optional[str] = None
    title: str = ""
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: list[CardButton] = []


class QuickReplyCard(EditorModel):
    type: Literal["quickReply"] = "quickReply"
    id: Optional[str] = None
    text: str = ""
    buttons: list[QuickReplyButton] = []


class UserInputCard(EditorModel):
    type: Literal["userInput"] = "userInput"
    id: Optional[str] = None
    prompt: str = ""
    variable_name: str
    next_block_id: Optional[str] = None


class DelayCard(EditorModel):
    type: Literal["delay"] = "delay"
    id: Optional[str] = None
    seconds: float = 0
    show_typing: bool = False


class GoToBlockCard(EditorModel):
    type: Literal["goToBlock"] = "goToBlock"
    id: Optional[str] = None
    block_id: str


Card = Annotated[
    Union[TextCard, ImageCard, GalleryCard, QuickReplyCard,
          UserInputCard, DelayCard, GoToBlockCard],
    Field(discriminator="type"),
]


def _decode_json_list(value: Any) -> Any:
    """Stored blocks/flows may carry their lists as JSON text."""
    if isinstance(value, str):
        return json.loads(value) if value.strip() else []
    if value is None:
        return []
    return value


class Block(EditorModel):
    """A named, triggerable sequence of cards."""
    id: str = Field(default_factory=_new_id)
    bot_id: str = ""
    name: str = ""
    group_name: Optional[str] = None
    cards: list[Card] = []
    triggers: list[str] = []
    is_welcome: bool = False
    is_default_answer: bool = False
    is_enabled: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("cards", "triggers", mode="before")
    @classmethod
    def _decode_lists(cls, value: Any) -> Any:
        return _decode_json_list(value)


# ──────────────────────────────────────────────────────────────
#  Flow Nodes: the legacy graph execution model
# ──────────────────────────────────────────────────────────────

class _FlowNodeBase(EditorModel):
    """
    Editor nodes look like ``{"id", "type", "position", "data": {...}}``.
    The ``data`` payload is flattened onto the node so handlers read
    ``node.message`` rather than ``node.data["message"]``.
    """
    id: str
    label: str = ""

    @model_validator(mode="before")
    @classmethod
    def _flatten_data(cls, value: Any) -> Any:
        if isinstance(value, dict) and isinstance(value.get("data"), dict):
            merged = {k: v for k, v in value.items() if k not in ("data", "position")}
            for key, item in value["data"].items():
                merged.setdefault(key, item)
            return merged
        return value


class StartNode(_FlowNodeBase):
    type: Literal["start"] = "start"


class EndNode(_FlowNodeBase):
    type: Literal["end"] = "end"


class TextNode(_FlowNodeBase):
    type: Literal["text"] = "text"
    message: str = ""


class ImageNode(_FlowNodeBase):
    type: Literal["image"] = "image"
    image_url: str = ""
    caption: Optional[str] = None


class CardNode(_FlowNodeBase):
    type: Literal["card"] = "card"
    title: str = ""
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: list[CardButton] = []


class QuickReplyNode(_FlowNodeBase):
    type: Literal["quickReply"] = "quickReply"
    message: str = ""
    buttons: list[FlowQuickReplyButton] = []


class UserInputNode(_FlowNodeBase):
    type: Literal["userInput"] = "userInput"
    prompt: str = ""
    variable_name: str = ""


class ConditionNode(_FlowNodeBase):
    type: Literal["condition"] = "condition"
    variable: Optional[str] = None
    operator: Optional[str] = None            # equals | contains | startsWith | endsWith
    value: Optional[str] = None


class DelayNode(_FlowNodeBase):
    type: Literal["delay"] = "delay"
    seconds: float = 0
    show_typing: bool = False


FlowNode = Annotated[
    Union[StartNode, EndNode, TextNode, ImageNode, CardNode, QuickReplyNode,
          UserInputNode, ConditionNode, DelayNode],
    Field(discriminator="type"),
]


class FlowEdge(EditorModel):
    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = None       # "true" | "false" on condition nodes
    target_handle: Optional[str] = None


class Flow(EditorModel):
    """A named, triggerable directed graph of nodes and edges."""
    id: str = Field(default_factory=_new_id)
    bot_id: str = ""
    name: str = ""
    nodes: list[FlowNode] = []
    edges: list[FlowEdge] = []
    triggers: list[str] = []
    is_default: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("nodes", "edges", "triggers", mode="before")
    @classmethod
    def _decode_lists(cls, value: Any) -> Any:
        return _decode_json_list(value)

    def find_node(self, node_id: Optional[str]):
        if not node_id:
            return None
        return next((n for n in self.nodes if n.id == node_id), None)

    def find_start(self):
        return next((n for n in self.nodes if n.type == NodeType.START.value), None)


# ──────────────────────────────────────────────────────────────
#  Session: persisted per-(bot, sender) execution pointer
# ──────────────────────────────────────────────────────────────

class Session(BaseModel):
    """
    Where a sender's conversation stands.

    At most one of ``current_block_id`` / ``current_node_id`` is set:
    the block and graph interpreters never share a session pointer.
    """
    id: str = Field(default_factory=_new_id)
    bot_id: str
    sender_id: str
    current_block_id: Optional[str] = None
    current_card_index: int = 0
    current_node_id: Optional[str] = None
    current_flow_id: Optional[str] = None     # flow owning current_node_id
    context: dict[str, str] = {}
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def in_block(self) -> bool:
        return self.current_block_id is not None

    @property
    def in_graph(self) -> bool:
        return self.current_node_id is not None

    @property
    def key(self) -> tuple[str, str]:
        return (self.bot_id, self.sender_id)


# ──────────────────────────────────────────────────────────────
#  Engagement records: contacts, message log, daily analytics
# ──────────────────────────────────────────────────────────────

class Contact(BaseModel):
    id: str = Field(default_factory=_new_id)
    bot_id: str
    sender_id: str
    name: Optional[str] = None
    profile_pic: Optional[str] = None
    platform: str = "facebook"
    message_count: int = 0
    first_seen_at: datetime = Field(default_factory=_utcnow)
    last_seen_at: datetime = Field(default_factory=_utcnow)


class MessageLog(BaseModel):
    id: str = Field(default_factory=_new_id)
    bot_id: str
    sender_id: str
    content: str
    direction: MessageDirection
    message_type: str = "text"                # text | image | card | quick_reply
    timestamp: datetime = Field(default_factory=_utcnow)


class DailyAnalytics(BaseModel):
    bot_id: str
    date: date
    total_messages: int = 0
    incoming_messages: int = 0
    outgoing_messages: int = 0
    unique_users: int = 0


# ──────────────────────────────────────────────────────────────
#  Outbound payloads: what the gateway is asked to deliver
# ──────────────────────────────────────────────────────────────

class OutboundButton(BaseModel):
    title: str
    kind: Literal["postback", "url"] = "postback"
    payload: Optional[str] = None
    url: Optional[str] = None


class OutboundCard(BaseModel):
    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: list[OutboundButton] = []


class QuickReplyOption(BaseModel):
    title: str
    payload: str


class OutboundQuickReplies(BaseModel):
    message: str
    buttons: list[QuickReplyOption] = []


# ──────────────────────────────────────────────────────────────
#  Execution Result: returned to the ingestion layer
# ──────────────────────────────────────────────────────────────

class ExecutionResult(BaseModel):
    """Turn-completion signal for the caller."""
    success: bool
    error: Optional[str] = None
    handled_by: str = "none"                  # block | graph | none
    messages_sent: int = 0

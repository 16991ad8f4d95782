from __future__ import annotations

import asyncio
import html
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field, ValidationError

from .. import diagram as graph
from .. import generation
from ..generation import InteractiveDiagram
from ..store import KeyValueStore, get_store
from ..topics import Topic
from .auth import User, get_current_user
from .topics import require_topic, require_unlocked


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/study", tags=["study"])

MERMAID_CDN = "https://cdn.jsdelivr.net/npm/mermaid/dist/mermaid.min.js"
RENDER_ERROR_HINT = "Prueba a regenerar el plan para corregir la sintaxis."


def text_key(topic_id: str) -> str:
    return f"study_text_{topic_id}"


def diagram_key(topic_id: str) -> str:
    return f"study_diagram_obj_{topic_id}"


def scroll_key(topic_id: str) -> str:
    return f"study_scroll_{topic_id}"


class GenerateRequest(BaseModel):
    # Regenerating over saved material needs an explicit confirmation
    confirm: bool = False


class AskRequest(BaseModel):
    question: str


class ScrollRequest(BaseModel):
    position: int = Field(ge=0)


class RenderErrorRequest(BaseModel):
    message: Optional[str] = None


class DiagramView(BaseModel):
    code: str
    nodes: List[str]
    children: Dict[str, List[str]]
    parents: Dict[str, List[str]]
    node_details: Dict[str, str]


class StudyMaterial(BaseModel):
    topic: Topic
    outline: Optional[str] = None
    diagram: Optional[DiagramView] = None
    saved: bool = False
    scroll: int = 0


class NodeSelection(BaseModel):
    node_id: str
    label: Optional[str] = None
    detail: Optional[str] = None
    target: Optional[str] = None
    relatives: List[str]
    others: List[str]
    anchor: Optional[str] = None
    anchor_in_outline: bool = False


def load_diagram(store: KeyValueStore, topic_id: str) -> Optional[InteractiveDiagram]:
    raw = store.get(diagram_key(topic_id))
    if not raw:
        return None
    try:
        return InteractiveDiagram.model_validate(raw)
    except ValidationError as e:
        logger.error("Error parsing cached diagram for %s: %s", topic_id, e)
        return None


def build_diagram_view(data: InteractiveDiagram) -> DiagramView:
    code = graph.repair(data.mermaid_code)
    index = graph.build_adjacency_index(code)
    return DiagramView(
        code=code,
        nodes=graph.node_ids(code),
        children=index.children,
        parents=index.parents,
        node_details=data.node_details,
    )


def _material(topic: Topic, store: KeyValueStore) -> StudyMaterial:
    outline = store.get(text_key(topic.id))
    data = load_diagram(store, topic.id)
    return StudyMaterial(
        topic=topic,
        outline=outline,
        diagram=build_diagram_view(data) if data else None,
        saved=outline is not None,
        scroll=int(store.get(scroll_key(topic.id), 0) or 0),
    )


def _require_diagram(topic_id: str, store: KeyValueStore) -> InteractiveDiagram:
    data = load_diagram(store, topic_id)
    if data is None:
        raise HTTPException(status_code=404, detail="no diagram generated for this topic")
    return data


@router.get("/{topic_id}", response_model=StudyMaterial)
def get_material(topic_id: str, store: KeyValueStore = Depends(get_store)):
    return _material(require_topic(topic_id), store)


@router.post("/{topic_id}/generate", response_model=StudyMaterial)
async def generate_material(topic_id: str, req: GenerateRequest, store: KeyValueStore = Depends(get_store)):
    topic = require_topic(topic_id)
    require_unlocked(topic, store)
    if store.get(text_key(topic_id)) is not None and not req.confirm:
        raise HTTPException(status_code=409, detail="study plan already saved; resend with confirm=true to regenerate")

    outline, data = await asyncio.gather(
        generation.generate_study_outline(topic.title),
        generation.generate_interactive_diagram(topic.title),
    )
    store.set(text_key(topic_id), outline)
    if data is not None:
        store.set(diagram_key(topic_id), data.model_dump(by_alias=True))
    else:
        store.delete(diagram_key(topic_id))
    store.set(scroll_key(topic_id), 0)
    logger.info("Generated study material for %s (diagram=%s)", topic_id, data is not None)
    return _material(topic, store)


@router.post("/{topic_id}/ask")
async def ask_question(topic_id: str, req: AskRequest, user: User = Depends(get_current_user)):
    topic = require_topic(topic_id)
    question = (req.question or "").strip()
    if not question:
        raise HTTPException(status_code=400, detail="question is required")
    answer = await generation.generate_study_outline(topic.title, question)
    return {"answer": answer}


@router.put("/{topic_id}/scroll")
def save_scroll(topic_id: str, req: ScrollRequest, store: KeyValueStore = Depends(get_store)):
    require_topic(topic_id)
    store.set(scroll_key(topic_id), req.position)
    return {"scroll": req.position}


@router.get("/{topic_id}/diagram", response_model=DiagramView)
def get_diagram(topic_id: str, store: KeyValueStore = Depends(get_store)):
    require_topic(topic_id)
    return build_diagram_view(_require_diagram(topic_id, store))


@router.get("/{topic_id}/diagram/nodes/{node_ref}", response_model=NodeSelection)
def select_node(topic_id: str, node_ref: str, store: KeyValueStore = Depends(get_store)):
    """Select a node by id or by rendered element id (``flowchart-N2-3``)."""
    require_topic(topic_id)
    data = _require_diagram(topic_id, store)
    node_id = graph.node_id_from_element_id(node_ref)
    code = graph.repair(data.mermaid_code)
    index = graph.build_adjacency_index(code)
    parts = graph.highlight(node_id, index, graph.node_ids(code))
    label = graph.label_for_node(node_id, code)
    anchor = graph.slugify(label) if label else None
    outline = store.get(text_key(topic_id)) or ""
    return NodeSelection(
        node_id=node_id,
        label=label,
        detail=data.node_details.get(node_id),
        target=parts.target,
        relatives=parts.relatives,
        others=parts.others,
        anchor=anchor,
        anchor_in_outline=bool(anchor) and anchor in graph.heading_anchors(outline),
    )


@router.post("/{topic_id}/diagram/render-error")
def report_render_error(topic_id: str, req: RenderErrorRequest, store: KeyValueStore = Depends(get_store)):
    require_topic(topic_id)
    data = _require_diagram(topic_id, store)
    code = graph.repair(data.mermaid_code)
    logger.warning("Mermaid render failed for %s: %s", topic_id, req.message or "unknown error")
    return {"code": code, "hint": RENDER_ERROR_HINT, "regenerate": True}


def render_export_html(topic: Topic, outline: str, data: Optional[InteractiveDiagram]) -> str:
    title = html.escape(topic.title)
    body = html.escape(outline).replace("\n", "<br/>")
    diagram_html = ""
    if data is not None:
        diagram_html = f'<div class="mermaid">{html.escape(graph.repair(data.mermaid_code))}</div>'
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"/>"
        f"<title>{title}</title>"
        f"<script src=\"{MERMAID_CDN}\"></script></head>"
        f"<body><h1>{title}</h1><div>{body}</div><hr/>{diagram_html}"
        "<script>mermaid.initialize({ startOnLoad: true });</script></body></html>"
    )


@router.get("/{topic_id}/export", response_class=HTMLResponse)
def export_material(topic_id: str, store: KeyValueStore = Depends(get_store)):
    topic = require_topic(topic_id)
    outline = store.get(text_key(topic_id))
    if outline is None:
        raise HTTPException(status_code=404, detail="no study plan saved for this topic")
    filename = f"{topic.id}.html"
    return HTMLResponse(
        content=render_export_html(topic, outline, load_diagram(store, topic_id)),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

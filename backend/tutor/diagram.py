"""Repair and index Mermaid flowchart code produced by the model.

The generator is asked for `graph LR` flowcharts with `N1["Label"]` nodes but
routinely returns fenced blocks, escaped newlines, fused statements and labels
containing characters that break Mermaid's quoting. `repair` coerces that text
into something Mermaid can parse; `build_adjacency_index` derives the
parent/child lookups that drive node highlighting in the study view.

Nothing in this module raises on bad input.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

DEFAULT_DECLARATION = "graph LR"

_ORIENTATION = r"(?:graph|flowchart)[ \t]+(?:TB|TD|BT|RL|LR)"
_DECLARATION_LINE_RE = re.compile(rf"^[ \t]*{_ORIENTATION}[ \t]*;?[ \t]*$")
_DECLARATION_START_RE = re.compile(rf"^[ \t]*{_ORIENTATION}", re.MULTILINE)
_FUSED_DECLARATION_RE = re.compile(rf"(?<=\S)[ \t]*(?={_ORIENTATION})")
_FUSED_CLASSDEF_RE = re.compile(r"(?<=\S)[ \t]*(?=classDef\b)")
_DECLARATION_TAIL_RE = re.compile(rf"({_ORIENTATION};?)[ \t]*(?=[^\s;])")
_FENCE_RE = re.compile(r"```(?:mermaid|json)?", re.IGNORECASE)
_LABEL_RE = re.compile(r'\["(.*?)"\]')
_STASHED_LABEL_RE = re.compile(r"\x00(\d+)\x00")
_LABEL_UNSAFE_RE = re.compile(r"[()\[\]{}\"';\\]")
_ESCAPES = (("\\r\\n", "\n"), ("\\n", "\n"), ('\\"', '"'))

_NODE_ID = r"[A-Za-z0-9_]+"
_SHAPE = r"(?:\[[^\]\n]*\]|\([^)\n]*\)|\{[^}\n]*\})*"
# The source may not sit right after another link ("A -- text --> B" is not text -> B)
_EDGE_RE = re.compile(
    rf"(?<![-=.])(?<![-=.][ \t])\b({_NODE_ID})[ \t]*{_SHAPE}(?::::[A-Za-z0-9_-]+)?[ \t]*"
    rf"[-=.]+>[ \t]*(?:\|[^|\n]*\|[ \t]*)?(?=({_NODE_ID}))"
)
_DECLARED_NODE_RE = re.compile(rf"(?<![:\w])({_NODE_ID})[ \t]*[\[({{]")
_QUOTED_RE = re.compile(r'"[^"\n]*"')
_COMMENT_RE = re.compile(r"%%.*$", re.MULTILINE)

_KEYWORDS = {
    "graph", "flowchart", "classDef", "class", "style", "linkStyle",
    "subgraph", "end", "click", "direction",
    "TB", "TD", "BT", "RL", "LR",
}


@dataclass
class AdjacencyIndex:
    children: Dict[str, List[str]] = field(default_factory=dict)
    parents: Dict[str, List[str]] = field(default_factory=dict)

    def add_edge(self, source: str, target: str) -> None:
        kids = self.children.setdefault(source, [])
        if target not in kids:
            kids.append(target)
        ancestors = self.parents.setdefault(target, [])
        if source not in ancestors:
            ancestors.append(source)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {"children": self.children, "parents": self.parents}


@dataclass
class Highlight:
    target: Optional[str]
    relatives: List[str]
    others: List[str]


def _sanitize_label(match: re.Match) -> str:
    content = _LABEL_UNSAFE_RE.sub(" ", match.group(1))
    content = re.sub(r"\s+", " ", content).strip()
    return f'["{content}"]'


def _split_fused(text: str) -> str:
    # "5 5graph LR" and ":::mainclassDef main ..." come from dropped newlines.
    # Labels are stashed first so "graph LR" inside ["..."] stays put.
    labels: List[str] = []

    def stash(match: re.Match) -> str:
        labels.append(match.group(0))
        return f"\x00{len(labels) - 1}\x00"

    masked = _LABEL_RE.sub(stash, text)
    masked = _FUSED_DECLARATION_RE.sub("\n", masked)
    masked = _FUSED_CLASSDEF_RE.sub("\n", masked)
    masked = _DECLARATION_TAIL_RE.sub(r"\1\n", masked)
    return _STASHED_LABEL_RE.sub(lambda m: labels[int(m.group(1))], masked)


def repair(source: Optional[str]) -> str:
    """Best-effort normalisation of model output into a parseable flowchart.

    The result always starts with a single orientation declaration and is
    stable under a second application.
    """
    clean = (source or "").replace("\x00", "").replace("\r\n", "\n")

    # Repeat until no escape is left so "\\n" cannot resurface on a second pass
    while any(escaped in clean for escaped, _ in _ESCAPES):
        for escaped, real in _ESCAPES:
            clean = clean.replace(escaped, real)
    clean = _FENCE_RE.sub("", clean).strip()

    clean = _split_fused(clean)

    start = _DECLARATION_START_RE.search(clean)
    if start is None:
        clean = f"{DEFAULT_DECLARATION}\n{clean}"
    else:
        clean = clean[start.start():]

    clean = _LABEL_RE.sub(_sanitize_label, clean)

    lines = [line.rstrip() for line in clean.split("\n") if line.strip()]
    head = lines[0].strip()
    body = [line for line in lines[1:] if not _DECLARATION_LINE_RE.match(line)]
    return "\n".join([head] + body)


def _scannable(repaired: str) -> str:
    # Arrows inside labels or comments are not edges
    masked = _COMMENT_RE.sub("", repaired or "")
    return _QUOTED_RE.sub('""', masked)


def build_adjacency_index(repaired: str) -> AdjacencyIndex:
    index = AdjacencyIndex()
    for match in _EDGE_RE.finditer(_scannable(repaired)):
        index.add_edge(match.group(1), match.group(2))
    return index


def node_ids(repaired: str) -> List[str]:
    """Every node id, declared or only used as an edge endpoint, in order of first appearance."""
    text = _scannable(repaired)
    found: Dict[str, int] = {}
    for match in _DECLARED_NODE_RE.finditer(text):
        found.setdefault(match.group(1), match.start())
    for match in _EDGE_RE.finditer(text):
        found.setdefault(match.group(1), match.start(1))
        found.setdefault(match.group(2), match.start(2))
    ordered = sorted(found.items(), key=lambda item: item[1])
    return [node for node, _ in ordered if node not in _KEYWORDS]


def label_for_node(node_id: str, repaired: str) -> Optional[str]:
    if not node_id or not repaired:
        return None
    pattern = re.compile(
        rf"\b{re.escape(node_id)}[ \t]*[\[({{]+[\"']?([^\"'\])}}\n]+)[\"']?[\])}}]+"
    )
    match = pattern.search(repaired)
    return match.group(1).strip() if match else None


def related_nodes(selected_id: Optional[str], index: AdjacencyIndex) -> Dict[str, List[str]]:
    if not selected_id:
        return {"children": [], "parents": []}
    return {
        "children": list(index.children.get(selected_id, [])),
        "parents": list(index.parents.get(selected_id, [])),
    }


def highlight(selected_id: Optional[str], index: AdjacencyIndex, nodes: Iterable[str]) -> Highlight:
    """Partition nodes into the selection, its one-hop relatives and the rest."""
    nodes = list(nodes)
    if not selected_id:
        return Highlight(target=None, relatives=[], others=nodes)
    related = related_nodes(selected_id, index)
    relatives: List[str] = []
    for node in related["children"] + related["parents"]:
        if node != selected_id and node not in relatives:
            relatives.append(node)
    others = [n for n in nodes if n != selected_id and n not in relatives]
    return Highlight(target=selected_id, relatives=relatives, others=others)


def node_id_from_element_id(element_id: str) -> str:
    # Mermaid renders nodes as "flowchart-<id>-<counter>"
    parts = (element_id or "").split("-")
    if len(parts) >= 2 and parts[0] in ("flowchart", "graph"):
        return parts[1]
    return element_id


def slugify(text: str) -> str:
    slug = unicodedata.normalize("NFD", str(text).lower())
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w\-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def heading_anchors(markdown: str) -> List[str]:
    """Anchors for the markdown headings (levels 1-3) of a study outline."""
    anchors: List[str] = []
    for match in re.finditer(r"^#{1,3}[ \t]+(.+?)[ \t#]*$", markdown or "", re.MULTILINE):
        anchors.append(slugify(match.group(1)))
    return anchors

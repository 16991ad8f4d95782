from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .gemini_client import GeminiClient


logger = logging.getLogger(__name__)


TUTOR_SYSTEM_INSTRUCTION = (
    "Eres un tutor experto en la preparación de oposiciones para administraciones locales en Andalucía. "
    "Responde basándote en la Constitución Española, el Estatuto de Andalucía, la Ley de Bases de Régimen Local "
    "y demás normativa específica del temario. Sé pedagógico y cita artículos. Si el usuario te pide repasar fallos, "
    "analiza las preguntas que falló, explica por qué la respuesta correcta es la que es, y da reglas mnemotécnicas "
    "para recordarlo."
)


class QuizQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str
    options: List[str]
    correct_answer_index: int = Field(alias="correctAnswerIndex")
    explanation: str = ""


class InteractiveDiagram(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mermaid_code: str = Field(alias="mermaidCode")
    node_details: Dict[str, str] = Field(default_factory=dict, alias="nodeDetails")


QUIZ_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "question": {"type": "STRING"},
            "options": {"type": "ARRAY", "items": {"type": "STRING"}},
            "correctAnswerIndex": {"type": "INTEGER"},
            "explanation": {"type": "STRING"},
        },
    },
}


def extract_json(text: str) -> Any:
    """Parse JSON out of model output that may be fenced or wrapped in prose."""
    text = (text or "").strip()
    try:
        return json.loads(text)
    except ValueError:
        pass
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        try:
            return json.loads(code_block.group(1))
        except ValueError:
            pass
    for opener, closer in (("{", "}"), ("[", "]")):
        first = text.find(opener)
        last = text.rfind(closer)
        if first != -1 and last > first:
            try:
                return json.loads(text[first : last + 1])
            except ValueError:
                continue
    raise ValueError("no JSON document found in model output")


def _client() -> GeminiClient:
    try:
        return GeminiClient()
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def _upstream_error(e: Exception) -> HTTPException:
    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 503:
        return HTTPException(status_code=503, detail="Gemini API unavailable")
    return HTTPException(status_code=502, detail=f"Gemini call failed: {e}")


def short_title(topic_title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9 áéíóúÁÉÍÓÚñÑ]", "", topic_title)[:25]


def build_outline_prompt(topic_title: str, user_query: Optional[str] = None) -> str:
    if user_query:
        return (
            "Actúa como un preparador personal de oposiciones experto. "
            f"El alumno está en la fase de estudio de \"{topic_title}\" y tiene esta duda concreta: \"{user_query}\". "
            "Responde de forma pedagógica, estructurada y enlazando con la normativa."
        )
    return f"""Actúa como un preparador de oposiciones de alto nivel.

TU OBJETIVO: Crear un PLAN DE ESTUDIO GUIADO paso a paso para el tema: "{topic_title}".
No quiero un simple resumen. Quiero una GUÍA DE PREPARACIÓN que me lleve de la mano.

Estructura la respuesta en Markdown estrictamente así:

# Guía de Estudio: {topic_title}

## 🎯 Objetivos del Tema
(Qué debo saber al terminar)

## 🧠 Fase 1: Mapa Mental y Conceptos Clave
(Explica los pilares fundamentales del tema antes de entrar en leyes. Usa analogías si es útil).

## 📖 Fase 2: Análisis Normativo (Paso a Paso)
(Desglosa el contenido. No copies los artículos, explícalos y agrúpalos lógicamente para estudiarlos).
* **Bloque A:** ...
* **Bloque B:** ...

## 💡 Fase 3: Reglas Mnemotécnicas y Trucos
(Da reglas para memorizar listas, plazos o mayorías difíciles de este tema específico).

## ⚠️ Puntos Críticos de Examen
(Qué suelen preguntar los tribunales sobre este tema. Dónde están las "trampas")."""


def build_diagram_prompt(topic_title: str) -> str:
    title = short_title(topic_title)
    return f"""Actúa como un experto en visualización de datos.
Crea un MAPA MENTAL JERÁRQUICO (Mermaid.js) para estudiar: "{topic_title}".

OBJETIVO: Un esquema visual ROBUSTO y SIN ERRORES DE SINTAXIS.

REGLAS OBLIGATORIAS (SINTAXIS MERMAID):
1. LA PRIMERA LÍNEA DEL CÓDIGO DEBE SER EXACTAMENTE: graph LR
2. Nodos: Usa IDs simples (N1, N2, N3...) y texto entre comillas dobles y corchetes.
   Ejemplo: N1["Titulo Principal"]
3. Texto de nodos:
   - Solo letras y números.
   - MÁXIMO 4 palabras.
   - ELIMINA: comillas, paréntesis, corchetes, puntos, comas.
4. NODO RAÍZ (N1): Su texto DEBE SER EXACTAMENTE: "{title}"
5. CLASES: NO definas 'classDef' al principio. Defínelos AL FINAL.

PLANTILLA OBLIGATORIA (Usa saltos de línea \\n explícitos):
graph LR
N1["{title}"]:::main
N1 --> N2["Conceptos"]:::sub
N2 --> N3["Detalle"]:::detail

%% Estilos
classDef main fill:#AA151B,stroke:#F1BF00,stroke-width:4px,color:white;
classDef sub fill:#1e293b,stroke:#F1BF00,stroke-width:2px,color:#F1BF00;
classDef detail fill:#0f172a,stroke:#334155,stroke-width:1px,color:#cbd5e1,stroke-dasharray: 5 5;

Debes devolver un OBJETO JSON:
{{
  "mermaidCode": "graph LR\\nN1[\\"{title}\\"]:::main --> N2[\\"Conceptos\\"]:::sub\\n...\\nclassDef main...",
  "nodeDetails": {{ "N1": "Explicación...", "N2": "Explicación..." }}
}}

IMPORTANTE:
- Usa saltos de línea explicitos (\\n) en el string JSON.
- Asegúrate de que hay un salto de línea antes de 'classDef'."""


def build_quiz_prompt(topic_title: str, count: int) -> str:
    return f"""Genera un examen tipo test de {count} preguntas sobre "{topic_title}" basado estrictamente en el temario oficial de oposiciones (Constitución, Estatuto Andalucía, Régimen Local, etc).
Las preguntas deben ser técnicas y rigurosas.

Devuelve SOLO un JSON válido con la siguiente estructura (Schema):
[
  {{
    "question": "Enunciado de la pregunta",
    "options": ["Opción A", "Opción B", "Opción C", "Opción D"],
    "correctAnswerIndex": 0,
    "explanation": "Breve explicación jurídica de por qué es la correcta."
  }}
]
correctAnswerIndex es el índice (0-3) de la opción correcta."""


async def generate_study_outline(topic_title: str, user_query: Optional[str] = None) -> str:
    client = _client()
    try:
        text = await client.generate(build_outline_prompt(topic_title, user_query))
    except Exception as e:
        logger.error("Study outline generation failed for %r: %s", topic_title, e)
        raise _upstream_error(e) from e
    finally:
        await client.aclose()
    text = (text or "").strip()
    if not text:
        raise HTTPException(status_code=502, detail="Gemini returned an empty study outline")
    return text


async def generate_interactive_diagram(topic_title: str) -> Optional[InteractiveDiagram]:
    """Returns None when the model output is unusable; the outline does not depend on it."""
    client = _client()
    try:
        raw = await client.generate(build_diagram_prompt(topic_title), response_mime_type="application/json")
    except Exception as e:
        logger.warning("Diagram generation failed for %r: %s", topic_title, e)
        return None
    finally:
        await client.aclose()
    try:
        data = extract_json(raw)
        diagram = InteractiveDiagram.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Diagram payload unusable for %r: %s", topic_title, e)
        return None
    diagram.node_details = {str(k): str(v) for k, v in diagram.node_details.items()}
    return diagram


def parse_quiz_questions(data: Any) -> List[QuizQuestion]:
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        return []
    questions: List[QuizQuestion] = []
    for item in data:
        try:
            q = QuizQuestion.model_validate(item)
        except ValidationError:
            continue
        options = [str(o).strip() for o in q.options if str(o).strip()]
        if not q.question.strip() or len(options) < 2:
            continue
        if not (0 <= q.correct_answer_index < len(options)):
            continue
        questions.append(QuizQuestion(
            question=q.question.strip(),
            options=options,
            correct_answer_index=q.correct_answer_index,
            explanation=q.explanation.strip(),
        ))
    return questions


async def generate_quiz_questions(topic_title: str, count: int = 5) -> List[QuizQuestion]:
    client = _client()
    try:
        raw = await client.generate(
            build_quiz_prompt(topic_title, count),
            response_mime_type="application/json",
            response_schema=QUIZ_RESPONSE_SCHEMA,
        )
    except Exception as e:
        logger.error("Quiz generation failed for %r: %s", topic_title, e)
        raise _upstream_error(e) from e
    finally:
        await client.aclose()
    try:
        questions = parse_quiz_questions(extract_json(raw))
    except ValueError as e:
        raise HTTPException(status_code=502, detail=f"LLM did not return valid JSON: {e}") from e
    if not questions:
        raise HTTPException(status_code=502, detail="LLM returned no usable questions")
    return questions[:count]


async def chat_with_tutor(message: str, history: List[Dict[str, str]]) -> str:
    client = _client()
    try:
        text = await client.chat(message, history, system_instruction=TUTOR_SYSTEM_INSTRUCTION)
    except Exception as e:
        logger.error("Tutor chat failed: %s", e)
        raise _upstream_error(e) from e
    finally:
        await client.aclose()
    return (text or "").strip() or "Lo siento, no pude generar una respuesta."

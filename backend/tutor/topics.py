from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import BaseModel


class Topic(BaseModel):
	id: str
	title: str
	description: str
	articles: str


TOPICS: List[Topic] = [
	Topic(
		id="tema_1_constitucion",
		title="TEMA 1: La Constitución Española de 1978",
		description="Principios generales y estructura. Los derechos y deberes fundamentales: garantía y suspensión. La Transición, características y el Tribunal Constitucional.",
		articles="Arts. 1-55, 159-169",
	),
	Topic(
		id="tema_2_corona_cortes",
		title="TEMA 2: La Corona. Las Cortes Generales",
		description="Funciones del Rey, sucesión y regencia. Congreso y Senado: composición, atribuciones y funcionamiento. Defensor del Pueblo.",
		articles="Arts. 56-96",
	),
	Topic(
		id="tema_3_gobierno_judicial",
		title="TEMA 3: El Gobierno y la Administración. Poder Judicial",
		description="Composición y funciones del Gobierno. Administración General del Estado. Relaciones con las Cortes. Principios del Poder Judicial y CGPJ.",
		articles="Arts. 97-127",
	),
	Topic(
		id="tema_5_estatuto_andalucia",
		title="TEMA 5: Estatuto de Autonomía para Andalucía",
		description="Estructura y disposiciones generales. Competencias de la Comunidad Autónoma. Organización institucional (Parlamento, Presidente, Consejo de Gobierno).",
		articles="Estatuto Autonomía",
	),
	Topic(
		id="tema_6_regimen_local",
		title="TEMA 6: El Régimen Local Español",
		description="Principios constitucionales y regulación jurídica. Tipología de entes públicos. Autonomía local.",
		articles="LBRL / Art. 137-142 CE",
	),
	Topic(
		id="tema_8_municipio",
		title="TEMA 8: El Municipio",
		description="Organización municipal (Alcalde, Pleno, Junta de Gobierno). Competencias propias, delegadas e impropias. Padrón municipal.",
		articles="LBRL / LAULA",
	),
	Topic(
		id="tema_10_hacienda_local",
		title="TEMA 10: Derecho Financiero y Hacienda Local",
		description="Concepto y contenido del Derecho Financiero. La Hacienda Local en la Constitución. Régimen jurídico de las Haciendas Locales (TRLRHL).",
		articles="TRLRHL",
	),
	Topic(
		id="tema_11_prl",
		title="TEMA 11: Prevención de Riesgos Laborales",
		description="Ley 31/1995. Definiciones, derechos a la protección, obligaciones de empresa y trabajadores, y principios de la acción preventiva.",
		articles="Ley 31/1995",
	),
	Topic(
		id="tema_igualdad",
		title="TEMA: Políticas de Igualdad",
		description="Políticas de igualdad entre mujeres y hombres. Teoría sexo-género. Marco normativo (estatal, autonómico, local). Violencia de género.",
		articles="LO 3/2007, Ley 12/2007",
	),
]

_BY_ID: Dict[str, Topic] = {t.id: t for t in TOPICS}


def get_topic(topic_id: str) -> Optional[Topic]:
	return _BY_ID.get(topic_id)


def topic_index(topic_id: str) -> int:
	for i, topic in enumerate(TOPICS):
		if topic.id == topic_id:
			return i
	return -1

"""Recommended training hours catalog.

Used when a training product carries no duration of its own. Lookup order:
exact normalized formation name, then keyword rules, then an explicit
"<n> h" / "<n> horas" mention inside the name.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from src.dealsync.core.text import normalize_text

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_HOURS_LABEL = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:h|horas?|hrs?)\b", re.IGNORECASE)


def normalize_formation_label(value: str) -> str:
    return _NON_ALNUM.sub(" ", normalize_text(value)).strip()


_CATALOG_ENTRIES: tuple[tuple[str, float], ...] = (
    ("Uso de extintores portátiles", 4),
    ("Formación uso de extintores", 4),
    ("Extintores y agentes extintores", 4),
    ("Formación básica contra incendios", 8),
    ("Formación avanzada contra incendios", 16),
    ("Formación reciclaje contra incendios", 4),
    ("Lucha contra incendios nivel básico", 8),
    ("Lucha contra incendios nivel medio", 12),
    ("Lucha contra incendios nivel avanzado", 16),
    ("Autoprotección y emergencias", 8),
    ("Plan de autoprotección", 12),
    ("Planes de autoprotección", 12),
    ("Simulacro de emergencia", 4),
    ("Simulacros de emergencia", 4),
    ("BIEs y mangueras", 4),
    ("Manejo de BIE", 4),
    ("Equipos de emergencia BIE", 4),
    ("Equipo de intervención", 8),
    ("Equipos de intervención", 8),
    ("ERA (equipo de respiración autónoma)", 8),
    ("Equipos de respiración autónoma", 8),
    ("Prácticas ERA", 6),
    ("Espacios confinados", 8),
    ("Trabajos en altura", 8),
    ("Rescate en altura", 12),
    ("Rescate vertical", 12),
    ("Rescate en espacios confinados", 12),
    ("Prevención de riesgos en altura", 6),
    ("Primeros auxilios", 6),
    ("Primeros auxilios avanzados", 8),
    ("Primeros auxilios y DEA", 8),
    ("Desfibrilador DEA", 4),
    ("Riesgo eléctrico", 6),
    ("Prevención de riesgos eléctricos", 6),
    ("Carretillas elevadoras", 8),
    ("Carretillas elevadoras y plataforma elevadora", 12),
    ("Plataformas elevadoras móviles de personal", 8),
    ("Grúa puente", 8),
    ("Operador de grúa puente", 8),
    ("Manipulación de mercancías peligrosas", 12),
    ("Materiales peligrosos", 12),
    ("Control de derrames de hidrocarburos", 8),
    ("Plan de evacuación", 4),
    ("Planes de evacuación", 4),
    ("Investigación de incendios", 8),
    ("Puesto de mando avanzado", 6),
    ("Comunicaciones de emergencia", 4),
    ("Incendios industriales", 12),
    ("Incendios forestales", 12),
    ("Uso de hidrantes", 4),
    ("Logística de emergencias", 6),
)

# Checked in order against the normalized label; first match wins.
_KEYWORD_RULES: tuple[tuple[re.Pattern[str], float], ...] = tuple(
    (re.compile(pattern), hours)
    for pattern, hours in (
        (r"\breciclaj", 4),
        (r"\bbasi(?:co|ca)\b", 8),
        (r"\bavanzad", 16),
        (r"\brefresc", 4),
        (r"\bintroductori", 4),
        (r"espacios?\s+confinad", 8),
        (r"altura", 8),
        (r"rescate", 12),
        (r"primeros?\s+auxilio", 6),
        (r"desfibrilador|\bdea\b", 4),
        (r"extintor", 4),
        (r"\bbie\b", 4),
        (r"manguer", 4),
        (r"autoproteccion", 8),
        (r"plan\s+de\s+autoproteccion", 12),
        (r"carretill", 8),
        (r"plataforma\s+elevadora", 8),
        (r"grua|puente\s+grua", 8),
        (r"material(es)?\s+peligros", 12),
        (r"riesg[oa]\s+electric", 6),
        (r"hidrante", 4),
    )
)

CATALOG: dict[str, float] = {
    normalize_formation_label(label): hours for label, hours in _CATALOG_ENTRIES
}


def _hours_from_text(value: str) -> float | None:
    match = _HOURS_LABEL.search(value)
    if not match:
        return None
    return float(match.group(1).replace(",", "."))


def resolve_recommended_hours(value: str | None) -> float | None:
    """Return catalog hours for a formation name, or None when unknown."""
    if not isinstance(value, str):
        return None

    normalized = normalize_formation_label(value)
    if not normalized:
        return None

    if normalized in CATALOG:
        return CATALOG[normalized]

    for pattern, hours in _KEYWORD_RULES:
        if pattern.search(normalized):
            return hours

    return _hours_from_text(value)


def resolve_recommended_hours_from_list(values: Iterable[str | None]) -> float | None:
    """First catalog hit across several candidate names (name, code, ...)."""
    for value in values:
        resolved = resolve_recommended_hours(value)
        if resolved is not None:
            return resolved
    return None

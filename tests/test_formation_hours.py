"""Tests for the recommended training hours catalog."""

from __future__ import annotations

import pytest

from src.dealsync.deals.formation_hours import (
    normalize_formation_label,
    resolve_recommended_hours,
    resolve_recommended_hours_from_list,
)


def test_label_normalization():
    assert normalize_formation_label("  Formación básica contra-incendios ") == "formacion basica contra incendios"


@pytest.mark.parametrize(
    "name,hours",
    [
        ("Primeros auxilios", 6),
        ("PRIMEROS AUXILIOS", 6),
        ("Trabajos en altura", 8),
        ("ERA (equipo de respiración autónoma)", 8),
        ("Plan de autoprotección", 12),
    ],
)
def test_exact_catalog_entries(name, hours):
    assert resolve_recommended_hours(name) == hours


def test_keyword_rules():
    assert resolve_recommended_hours("Curso de reciclaje para bomberos") == 4
    assert resolve_recommended_hours("Manejo seguro de carretillas") == 8


def test_hours_mentioned_in_name():
    assert resolve_recommended_hours("Taller práctico 10 horas") == 10
    assert resolve_recommended_hours("Jornada 2,5h") == 2.5


def test_unknown_names():
    assert resolve_recommended_hours("Consultoría") is None
    assert resolve_recommended_hours("") is None
    assert resolve_recommended_hours(None) is None


def test_first_hit_across_candidates():
    assert resolve_recommended_hours_from_list([None, "Consultoría", "Extintores y agentes extintores"]) == 4
    assert resolve_recommended_hours_from_list([]) is None

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from services import CategoryService, SettingsService, category_slug


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def test_defaults_are_listed_first() -> None:
    with _session() as session:
        categories = CategoryService(session).list_all()
        values = [c["value"] for c in categories]
        assert values[0] == "alimentacao"
        assert "subscription" in values
        assert all(c["is_default"] for c in categories)


def test_custom_category_is_persisted_in_user_settings() -> None:
    with _session() as session:
        created = CategoryService(session).create("Pets & Vet")
        assert created == {"value": "pets_vet", "label": "Pets & Vet", "is_default": False}

        stored = SettingsService(session).get("categories")
        assert stored == [{"value": "pets_vet", "label": "Pets & Vet"}]
        assert CategoryService(session).list_all()[-1]["value"] == "pets_vet"


def test_duplicate_slugs_are_rejected() -> None:
    with _session() as session:
        service = CategoryService(session)
        with pytest.raises(ValueError, match="already exists"):
            service.create("Saúde")
        service.create("Viagem")
        with pytest.raises(ValueError, match="already exists"):
            service.create("  viagem ")


def test_delete_custom_but_not_default() -> None:
    with _session() as session:
        service = CategoryService(session)
        service.create("Viagem")
        service.delete("viagem")
        assert "viagem" not in [c["value"] for c in service.list_all()]

        with pytest.raises(ValueError, match="cannot be removed"):
            service.delete("casa")
        with pytest.raises(ValueError, match="Category not found"):
            service.delete("viagem")


def test_settings_are_scoped_per_user() -> None:
    with _session() as session:
        SettingsService(session, user_id=1).set("theme", {"dark": True})
        SettingsService(session, user_id=2).set("theme", {"dark": False})

        assert SettingsService(session, user_id=1).get("theme") == {"dark": True}
        assert SettingsService(session, user_id=2).get("theme") == {"dark": False}
        assert SettingsService(session, user_id=3).get("theme", "default") == "default"


def test_category_slug_strips_accents() -> None:
    assert category_slug("Educação Infantil") == "educacao_infantil"
    with pytest.raises(ValueError):
        category_slug("  !! ")

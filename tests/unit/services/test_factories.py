"""Factory wiring errors when required settings are missing."""

from __future__ import annotations

import pytest

from plotcrm.services import factories
from plotcrm.settings import reload_settings


def _settings(*, firestore_project=None, search_project=None, data_store=None):
    base = reload_settings(env="dev")
    return base.model_copy(
        update={
            "storage": base.storage.model_copy(update={"firestore_project": firestore_project}),
            "search_index": base.search_index.model_copy(
                update={"project": search_project, "data_store": data_store}
            ),
        }
    )


def test_customer_store_requires_firestore_project():
    with pytest.raises(RuntimeError, match="firestore_project"):
        factories.build_customer_store(settings=_settings())


def test_search_list_store_requires_firestore_project():
    with pytest.raises(RuntimeError, match="firestore_project"):
        factories.build_search_list_store(settings=_settings())


def test_search_index_requires_project_and_data_store():
    with pytest.raises(RuntimeError, match="PLOTCRM_SEARCH_INDEX__DATA_STORE"):
        factories.build_search_index(settings=_settings(search_project="plot-crm-dev"))


def test_bulk_synchronizer_without_index_skips_index_wiring(monkeypatch, firestore_client):
    built = {}

    def fake_store(*, settings=None, project=None, database=None):
        built["project"] = project
        return factories.CustomerDocumentStore(collection="Customers", client=firestore_client)

    monkeypatch.setattr(factories, "build_customer_store", fake_store)

    bulk = factories.build_bulk_synchronizer(settings=_settings(), project="source-project", with_index=False)

    assert built["project"] == "source-project"
    with pytest.raises(RuntimeError):
        bulk.apply_index_settings()

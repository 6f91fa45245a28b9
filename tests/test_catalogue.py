import asyncio

import pytest
from pydantic import ValidationError

from schema import CatalogueEntry
from src.catalogue import Catalogue, CatalogueStore, load_catalogue, map_columns

ORIGINAL_HEADERS_CSV = """Medicine Name,Manufacturer,MRP (Rs),Substitutes,Uses,Side_effects,Chemical Class,Habit Forming,Therapeutic Class,Action Class
Dolo 650,Micro Labs Ltd,30.91,"Calpol 650, Pacimol 650","Pain relief, Fever",Nausea,Anilide,No,PAIN ANALGESICS,Analgesic
Azithromycin,Cipla Ltd,71.00,,Bacterial infections,,Macrolides,No,ANTI INFECTIVES,
"""

SNAKE_CASE_CSV = """name,price(₹),manufacturer_name,side_effects,uses
Pan 40,155.0,Alkem Laboratories Ltd,"Headache, Diarrhea",Acidity
,0,Nobody,,
"""


def test_map_columns_accepts_header_variants():
    mapping = map_columns(["Medicine Name", "MRP (Rs)", "manufacturer_name", "Chemical Class", "unrelated"])
    assert mapping == {
        "Medicine Name": "name",
        "MRP (Rs)": "price",
        "manufacturer_name": "manufacturer",
        "Chemical Class": "chemical_class",
    }


def test_map_columns_first_variant_wins():
    mapping = map_columns(["name", "Medicine Name"])
    assert mapping == {"name": "name"}


def test_load_catalogue_with_display_headers(tmp_path):
    path = tmp_path / "medicines.csv"
    path.write_text(ORIGINAL_HEADERS_CSV, encoding="utf-8")

    catalogue = load_catalogue(path)

    assert len(catalogue) == 2
    dolo = catalogue.lookup("DOLO-650")
    assert dolo.manufacturer == "Micro Labs Ltd"
    assert dolo.price == "30.91"
    assert dolo.substitutes == ("Calpol 650", "Pacimol 650")
    assert dolo.uses == ("Pain relief", "Fever")
    assert dolo.chemical_class == "Anilide"
    assert dolo.habit_forming == "No"
    assert catalogue.lookup("azithromycin").substitutes == ()


def test_load_catalogue_with_dataset_headers(tmp_path):
    path = tmp_path / "medicines.csv"
    path.write_text(SNAKE_CASE_CSV, encoding="utf-8")

    catalogue = load_catalogue(path)

    # rows without a name are skipped
    assert len(catalogue) == 1
    pan = catalogue.entries[0]
    assert pan.name == "Pan 40"
    assert pan.price == "155.0"
    assert pan.manufacturer == "Alkem Laboratories Ltd"
    assert pan.side_effects == ("Headache", "Diarrhea")


def test_missing_file_yields_empty_catalogue(tmp_path):
    catalogue = load_catalogue(tmp_path / "does-not-exist.csv")
    assert len(catalogue) == 0
    assert catalogue.lookup("Dolo 650") is None


def test_no_name_column_yields_empty_catalogue(tmp_path):
    path = tmp_path / "medicines.csv"
    path.write_text("foo,bar\n1,2\n", encoding="utf-8")
    assert len(load_catalogue(path)) == 0


def test_indexes_are_normalized(entries):
    catalogue = Catalogue(entries)
    item = catalogue.index_by_key["dolo650"]
    assert item.entry.name == "Dolo 650"
    assert item.substitute_keys == ("calpol650", "pacimol650")
    assert "do" in item.bigrams


def test_entries_are_read_only(entries):
    entry = Catalogue(entries).entries[0]
    with pytest.raises(ValidationError):
        entry.name = "Changed"
    assert entry.name == "Dolo 650"


def test_store_loads_once_under_concurrency(tmp_path):
    path = tmp_path / "medicines.csv"
    path.write_text(ORIGINAL_HEADERS_CSV, encoding="utf-8")
    store = CatalogueStore(path)

    async def run():
        return await asyncio.gather(*(store.get() for _ in range(8)))

    results = asyncio.run(run())

    assert store.load_count == 1
    assert all(c is results[0] for c in results)
    assert len(results[0]) == 2


def test_store_sync_access_reuses_loaded_catalogue(tmp_path):
    path = tmp_path / "medicines.csv"
    path.write_text(ORIGINAL_HEADERS_CSV, encoding="utf-8")
    store = CatalogueStore(path)

    first = store.get_sync()
    second = asyncio.run(store.get())
    assert first is second


def test_store_from_entries():
    store = CatalogueStore.from_entries([CatalogueEntry(name="Crocin")])
    catalogue = asyncio.run(store.get())
    assert catalogue.lookup("crocin").name == "Crocin"
    assert store.load_count == 0

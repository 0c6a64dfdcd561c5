import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from catalog_api.crud.catalog_store import CatalogStore
from catalog_api.db import CatalogFile
from catalog_api.exceptions import ProductNotFoundError, StorageError, ValidationFailedError
from catalog_api.models.product import ProductQuery, SortField, SortOrder
from conftest import ASHWAGANDHA


class StepClock:
    """Each call is one second later than the previous one."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class FlakyFile(CatalogFile):
    def __init__(self, location, fail_on):
        super().__init__(location)
        self.fail_on = set(fail_on)
        self.saves = 0

    async def save(self, documents):
        self.saves += 1
        if self.saves in self.fail_on:
            raise StorageError("disk full")
        await super().save(documents)


def run(coro):
    return asyncio.run(coro)


def test_create_then_get_returns_payload_with_new_id(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        created = await store.create_product(ASHWAGANDHA)
        fetched = await store.get_product(created.id)
        await store.close()
        return created, fetched

    created, fetched = run(scenario())
    assert fetched == created
    assert created.id
    assert created.created_at == created.updated_at
    document = created.to_document()
    for key, value in ASHWAGANDHA.items():
        assert document[key] == value


def test_create_persists_before_returning(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        created = await store.create_product(ASHWAGANDHA)
        await store.close()
        reopened = await CatalogStore(CatalogFile(storage_path)).open()
        return created, await reopened.get_product(created.id)

    created, reloaded = run(scenario())
    assert reloaded == created
    stored = json.loads(storage_path.read_text(encoding="utf-8"))
    assert [doc["id"] for doc in stored] == [created.id]
    assert set(stored[0]) == {"id", "name", "category", "price", "image", "details", "createdAt", "updatedAt"}


def test_details_defaults_to_empty(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        payload = {k: v for k, v in ASHWAGANDHA.items() if k != "details"}
        return await store.create_product(payload)

    assert run(scenario()).details == ""


def test_update_price_changes_only_price_and_updated_at(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path), clock=StepClock()).open()
        created = await store.create_product(ASHWAGANDHA)
        updated = await store.update_product(created.id, {"price": 15})
        return created, updated

    created, updated = run(scenario())
    assert updated.price == 15
    assert updated.updated_at > created.updated_at
    assert updated.created_at == created.created_at
    keep = {"id", "name", "category", "image", "details", "created_at"}
    assert updated.model_dump(include=keep) == created.model_dump(include=keep)


def test_update_rejects_invalid_fields_and_leaves_record(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        created = await store.create_product(ASHWAGANDHA)
        errors = []
        invalid = (
            {"price": -1},
            {"price": 10 ** 400},
            {"name": "   "},
            {"id": "other"},
            {"colour": "red"},
            {},
        )
        for fields in invalid:
            with pytest.raises(ValidationFailedError) as info:
                await store.update_product(created.id, fields)
            errors.append(info.value.fields)
        return created, await store.get_product(created.id), errors

    created, current, errors = run(scenario())
    assert current == created
    assert errors == [["price"], ["price"], ["name"], ["id"], ["colour"], []]


def test_update_missing_product_is_not_found(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        with pytest.raises(ProductNotFoundError):
            await store.update_product("missing", {"price": 1})

    run(scenario())


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"name": "Tulsi"}, ["category", "price", "image"]),
        ({**ASHWAGANDHA, "price": -0.01}, ["price"]),
        ({**ASHWAGANDHA, "price": "12"}, ["price"]),
        ({**ASHWAGANDHA, "price": True}, ["price"]),
        ({**ASHWAGANDHA, "price": 10 ** 400}, ["price"]),
        ({**ASHWAGANDHA, "image": ""}, ["image"]),
        ({**ASHWAGANDHA, "category": None}, ["category"]),
        ({**ASHWAGANDHA, "createdAt": "2020-01-01T00:00:00Z"}, ["createdAt"]),
    ],
)
def test_create_validation_lists_violated_fields(storage_path, payload, expected):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        with pytest.raises(ValidationFailedError) as info:
            await store.create_product(payload)
        return info.value.fields, len(store)

    fields, size = run(scenario())
    assert sorted(fields) == sorted(expected)
    assert size == 0


def test_delete_then_get_and_delete_again_are_not_found(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        created = await store.create_product(ASHWAGANDHA)
        await store.delete_product(created.id)
        with pytest.raises(ProductNotFoundError):
            await store.get_product(created.id)
        with pytest.raises(ProductNotFoundError):
            await store.delete_product(created.id)
        return len(store)

    assert run(scenario()) == 0
    assert json.loads(storage_path.read_text(encoding="utf-8")) == []


def test_concurrent_creates_get_distinct_ids_without_lost_updates(storage_path):
    count = 25

    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        payloads = [{**ASHWAGANDHA, "name": f"Herb {i}"} for i in range(count)]
        created = await asyncio.gather(*(store.create_product(p) for p in payloads))
        await store.close()
        reopened = await CatalogStore(CatalogFile(storage_path)).open()
        return created, len(store), len(reopened)

    created, size, reloaded_size = run(scenario())
    assert len({record.id for record in created}) == count
    assert size == count
    assert reloaded_size == count


def test_concurrent_mutations_apply_in_submission_order(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        first = await store.create_product(ASHWAGANDHA)
        second = await store.create_product({**ASHWAGANDHA, "name": "Brahmi"})
        update_then_delete = await asyncio.gather(
            store.update_product(first.id, {"price": 20}),
            store.delete_product(first.id),
            return_exceptions=True,
        )
        delete_then_update = await asyncio.gather(
            store.delete_product(second.id),
            store.update_product(second.id, {"price": 20}),
            return_exceptions=True,
        )
        return update_then_delete, delete_then_update, len(store)

    update_then_delete, delete_then_update, size = run(scenario())
    assert update_then_delete[0].price == 20
    assert update_then_delete[1] is None
    assert delete_then_update[0] is None
    assert isinstance(delete_then_update[1], ProductNotFoundError)
    assert size == 0


def test_failed_write_reports_to_its_caller_only(storage_path):
    async def scenario():
        medium = FlakyFile(storage_path, fail_on={2})
        store = await CatalogStore(medium).open()
        results = await asyncio.gather(
            *(store.create_product({**ASHWAGANDHA, "name": name}) for name in ("A", "B", "C")),
            return_exceptions=True,
        )
        await store.close()
        reopened = await CatalogStore(CatalogFile(storage_path)).open()
        names = sorted(r.name for r in await reopened.list_products())
        return results, len(store), names

    results, size, names = run(scenario())
    assert results[0].name == "A"
    assert isinstance(results[1], StorageError)
    assert results[2].name == "C"
    assert size == 2
    assert names == ["A", "C"]


def test_list_filters_and_sorts(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path), clock=StepClock()).open()
        await store.create_product({**ASHWAGANDHA, "name": "Ashwagandha", "price": 12.5})
        await store.create_product({**ASHWAGANDHA, "name": "Brahmi", "price": 8, "details": "leaf powder"})
        await store.create_product(
            {"name": "Copper Bottle", "category": "Vessels", "price": 30, "image": "bottle.png"}
        )

        async def names(**kwargs):
            return [r.name for r in await store.list_products(ProductQuery(**kwargs))]

        return {
            "default": [r.name for r in await store.list_products()],
            "category": await names(category="herbs"),
            "text": await names(q="POWDER"),
            "range": await names(min_price=10, max_price=30),
            "price_desc": await names(sort=SortField.PRICE, order=SortOrder.DESC),
            "name_asc": await names(sort=SortField.NAME),
            "limited": await names(sort=SortField.PRICE, limit=1),
        }

    listed = run(scenario())
    assert listed["default"] == ["Copper Bottle", "Brahmi", "Ashwagandha"]
    assert sorted(listed["category"]) == ["Ashwagandha", "Brahmi"]
    assert listed["text"] == ["Brahmi"]
    assert sorted(listed["range"]) == ["Ashwagandha", "Copper Bottle"]
    assert listed["price_desc"] == ["Copper Bottle", "Ashwagandha", "Brahmi"]
    assert listed["name_asc"] == ["Ashwagandha", "Brahmi", "Copper Bottle"]
    assert listed["limited"] == ["Brahmi"]


def test_corrupted_file_resets_to_empty_usable_collection(storage_path):
    storage_path.parent.mkdir(parents=True)
    storage_path.write_text("[{not json", encoding="utf-8")

    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        recovered = store.recovered_from_corruption
        size = len(store)
        await store.create_product(ASHWAGANDHA)
        return recovered, size, len(store)

    recovered, size, size_after_create = run(scenario())
    assert recovered is True
    assert size == 0
    assert size_after_create == 1
    quarantined = list(storage_path.parent.glob("products.json.corrupt-*"))
    assert len(quarantined) == 1
    assert quarantined[0].read_text(encoding="utf-8") == "[{not json"


def test_non_array_file_counts_as_corrupted(storage_path):
    storage_path.parent.mkdir(parents=True)
    storage_path.write_text('{"products": []}', encoding="utf-8")

    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        return store.recovered_from_corruption, len(store)

    assert run(scenario()) == (True, 0)
    assert json.loads(storage_path.read_text(encoding="utf-8")) == []


def test_invalid_stored_entries_are_set_aside(storage_path):
    storage_path.parent.mkdir(parents=True)
    good = {
        **ASHWAGANDHA,
        "id": "abc",
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
    }
    broken = {"id": "broken", "price": -3}
    storage_path.write_text(json.dumps([good, broken, good]), encoding="utf-8")

    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        await store.create_product({**ASHWAGANDHA, "name": "Brahmi"})
        return store, [r.name for r in await store.list_products()]

    store, names = run(scenario())
    assert sorted(names) == ["Ashwagandha", "Brahmi"]
    assert store.recovered_from_corruption is False
    assert store.skipped_entries == 2
    assert store.degraded is True
    assert store.rejected_path.name.startswith("products.json.rejected-")
    assert json.loads(store.rejected_path.read_text(encoding="utf-8")) == [broken, good]


def test_missing_file_is_initialized(storage_path):
    async def scenario():
        store = await CatalogStore(CatalogFile(storage_path)).open()
        return store.recovered_from_corruption, len(store)

    assert run(scenario()) == (False, 0)
    assert json.loads(storage_path.read_text(encoding="utf-8")) == []

"""Tests for the HTTP client against a fake backend."""

import asyncio
import json

import httpx
import pytest

from allergy_scan.client import AllergyApiClient
from allergy_scan.errors import ConnectivityError, ServiceRejection
from allergy_scan.models import AllergenDraft, PhotoPayload, TextPayload


def run(coro):
    return asyncio.run(coro)


class TestListAllergens:

    def test_returns_records_in_store_order(self, make_client):
        async def scenario():
            async with make_client() as client:
                return await client.list_allergens()

        records = run(scenario())
        assert [r.id for r in records] == ["peanut-id", "milk-id", "sesame-id"]
        assert records[0].keywords == ("peanut", "groundnut")

    def test_duplicates_and_malformed_rows_dropped(self, backend, make_client):
        backend.allergens.append({"_id": "peanut-id", "name": "Peanut again"})
        backend.allergens.append({"keywords": ["no id or name"]})

        async def scenario():
            async with make_client() as client:
                return await client.list_allergens()

        records = run(scenario())
        assert len(records) == 3
        assert records[0].name == "Peanut"

    def test_store_down_is_connectivity_error(self, backend, make_client):
        backend.store_down = True

        async def scenario():
            async with make_client() as client:
                await client.list_allergens()

        with pytest.raises(ConnectivityError):
            run(scenario())

    def test_server_error_is_connectivity_error(self, backend, make_client):
        backend.store_status = 503

        async def scenario():
            async with make_client() as client:
                await client.list_allergens()

        with pytest.raises(ConnectivityError, match="HTTP 503"):
            run(scenario())

    def test_timeout_is_connectivity_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        async def scenario():
            async with AllergyApiClient(
                base_url="http://allergy.test", transport=httpx.MockTransport(handler)
            ) as client:
                await client.list_allergens()

        with pytest.raises(ConnectivityError, match="too long"):
            run(scenario())


class TestScan:

    def test_text_scan_is_multipart(self, backend, make_client, peanut_match):
        backend.scan_body = {"matches": [peanut_match], "safe": False, "timestamp": "t"}

        async def scenario():
            async with make_client() as client:
                return await client.scan(
                    ["peanut-id", "milk-id"], TextPayload(text="Contains peanuts and milk")
                )

        response = run(scenario())
        assert response.safe is False
        assert response.matches[0].allergen_name == "Peanut"

        (request,) = backend.requests_to("POST", "/scan")
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert body.count(b'name="selected_allergen_ids"') == 2
        assert b"peanut-id" in body and b"milk-id" in body
        assert b'name="text"' in body
        assert b"Contains peanuts and milk" in body
        assert b'name="file"' not in body

    def test_photo_scan_sends_file(self, backend, make_client):
        async def scenario():
            async with make_client() as client:
                await client.scan(
                    ["milk-id"], PhotoPayload(content=b"\xff\xd8jpegdata", filename="label.jpg")
                )

        run(scenario())
        (request,) = backend.requests_to("POST", "/scan")
        body = request.content
        assert b'name="file"; filename="label.jpg"' in body
        assert b"Content-Type: image/jpeg" in body
        assert b"\xff\xd8jpegdata" in body
        assert b'name="text"' not in body

    def test_rejection_detail_passed_through(self, backend, make_client):
        backend.scan_status = 413
        backend.scan_body = {"detail": "File too large. Maximum size is 5MB."}

        async def scenario():
            async with make_client() as client:
                await client.scan(["milk-id"], TextPayload(text="milk"))

        with pytest.raises(ServiceRejection) as exc_info:
            run(scenario())
        assert exc_info.value.detail == "File too large. Maximum size is 5MB."
        assert exc_info.value.status_code == 413

    def test_rejection_without_detail(self, backend, make_client):
        backend.scan_status = 500
        backend.scan_body = ["unexpected"]

        async def scenario():
            async with make_client() as client:
                await client.scan(["milk-id"], TextPayload(text="milk"))

        with pytest.raises(ServiceRejection, match="Scan failed"):
            run(scenario())

    def test_validation_list_detail(self, backend, make_client):
        backend.scan_status = 422
        backend.scan_body = {
            "detail": [{"loc": ["body", "selected_allergen_ids"], "msg": "Field required"}]
        }

        async def scenario():
            async with make_client() as client:
                await client.scan(["milk-id"], TextPayload(text="milk"))

        with pytest.raises(ServiceRejection, match="Field required"):
            run(scenario())

    def test_unreadable_success_body(self, backend, make_client):
        backend.scan_body = {"matches": "nope"}

        async def scenario():
            async with make_client() as client:
                await client.scan(["milk-id"], TextPayload(text="milk"))

        with pytest.raises(ServiceRejection, match="unreadable"):
            run(scenario())

    def test_scan_service_down(self, backend, make_client):
        backend.scan_down = True

        async def scenario():
            async with make_client() as client:
                await client.scan(["milk-id"], TextPayload(text="milk"))

        with pytest.raises(ConnectivityError):
            run(scenario())


class TestAllergenWrites:

    def test_create_sends_comma_joined_keywords(self, backend, make_client):
        draft = AllergenDraft(name="Egg", keywords=("egg", "albumen"), severity="HIGH")

        async def scenario():
            async with make_client() as client:
                return await client.create_allergen(draft)

        record = run(scenario())
        (request,) = backend.requests_to("POST", "/allergens")
        assert json.loads(request.content) == {
            "name": "Egg",
            "keywords": "egg, albumen",
            "severity": "HIGH",
        }
        assert record.name == "Egg"
        assert record.keywords == ("egg", "albumen")

    def test_update_missing_record(self, make_client):
        draft = AllergenDraft(name="Egg", keywords=("egg",))

        async def scenario():
            async with make_client() as client:
                await client.update_allergen("nope", draft)

        with pytest.raises(ServiceRejection, match="Allergen not found"):
            run(scenario())

    def test_delete(self, backend, make_client):
        async def scenario():
            async with make_client() as client:
                await client.delete_allergen("milk-id")

        run(scenario())
        assert [a["_id"] for a in backend.allergens] == ["peanut-id", "sesame-id"]

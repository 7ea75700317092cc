"""
Unit tests for PostStore.

Run against in-memory fakes of the remote store and the extraction
service (tests/fakes.py).

Run: pytest tests/unit/test_post_store.py -v
"""

import asyncio
import httpx
import pytest
from decimal import Decimal

from models.post import (
    ImageImportRow,
    ImageItem,
    ParsedPost,
    PostImportEntry,
    PostStatus,
    StepCompleted,
    WorkflowStep,
)
from models.pricing import PricingInputs
from models.sync import ChangeEvent, ChangeType
from services.post_store import PostStore, reconcile
from services.extraction_client import ExtractionClient, adapt_response
from services.record_mapper import row_to_post
from exceptions import (
    AnalysisInProgressError,
    DatabaseError,
    EmptyRawContentError,
    ExtractionError,
    ExtractionTimeoutError,
    OperatorRequiredError,
    PermissionDeniedError,
    PostNotFoundError,
    PostRejectedError,
    RecordMappingError,
    StepNotReadyError,
    ValidationError,
)

from tests.fakes import OWNER_ID, FakeExtractionClient, FakeRemoteStore, seed, settle
from tests.factories import PostRowFactory


def entries(*urls: str) -> list[PostImportEntry]:
    return [PostImportEntry(url=url) for url in urls]


# ===================
# LOADING
# ===================

class TestHydrate:
    """Tests for PostStore.hydrate()"""

    @pytest.mark.asyncio
    async def test_loads_owned_posts_newest_first(self, store, remote):
        seed(remote, id="older", created_at="2025-09-01T10:00:00+00:00")
        seed(remote, id="newer", created_at="2025-09-02T10:00:00+00:00")
        seed(remote, id="foreign", admin_id="admin-2")

        posts = await store.hydrate()

        assert [post.id for post in posts] == ["newer", "older"]
        assert remote.calls_to("select") == [{"admin_id": OWNER_ID}]

    @pytest.mark.asyncio
    async def test_skips_unmappable_rows(self, store, remote):
        seed(remote, id="good")
        remote.rows["bad"] = {"id": "bad", "admin_id": OWNER_ID, "url": None}

        posts = await store.hydrate()

        assert [post.id for post in posts] == ["good"]

    @pytest.mark.asyncio
    async def test_keeps_local_parsed_json_when_row_has_none(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()
        remote.rows["p1"]["parsed_json"] = None

        await store.hydrate()

        assert store.get("p1").parsed_json.title == "2024 BMW X7"

    @pytest.mark.asyncio
    async def test_clears_selection_of_vanished_post(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        store.set_active("p1")
        del remote.rows["p1"]

        await store.hydrate()

        assert store.active_id is None


# ===================
# IMPORT
# ===================

class TestImportPosts:
    """Tests for PostStore.import_posts()"""

    @pytest.mark.asyncio
    async def test_duplicate_within_batch_creates_one_post(self, store, remote):
        result = await store.import_posts(entries("https://a.test/1", "https://a.test/1"))

        assert len(result.created) == 1
        assert result.skipped == ["https://a.test/1"]
        assert len(remote.rows) == 1
        assert len(store.posts) == 1

    @pytest.mark.asyncio
    async def test_duplicates_compare_normalized(self, store):
        result = await store.import_posts(entries("https://A.test/car/", "https://a.test/car"))

        assert len(result.created) == 1
        assert len(result.skipped) == 1

    @pytest.mark.asyncio
    async def test_already_in_working_set(self, store, remote):
        seed(remote, url="https://a.test/1")
        await store.hydrate()

        result = await store.import_posts(entries("https://a.test/1", "https://a.test/2"))

        assert [post.url for post in result.created] == ["https://a.test/2"]
        assert result.skipped == ["https://a.test/1"]

    @pytest.mark.asyncio
    async def test_remote_store_is_authoritative(self, store, remote):
        # Imported by another session, not yet seen locally
        seed(remote, url="https://a.test/1")

        result = await store.import_posts(entries("https://a.test/1"))

        assert result.created == []
        assert result.skipped == ["https://a.test/1"]
        assert remote.calls_to("insert") == []

    @pytest.mark.asyncio
    async def test_remote_check_compares_normalized_urls(self, store, remote):
        seed(remote, url="https://Site.test/car/1/")

        result = await store.import_posts(entries("https://site.test/car/1"))

        assert result.created == []
        assert result.skipped == ["https://site.test/car/1"]
        assert remote.calls_to("insert") == []

    @pytest.mark.asyncio
    async def test_new_posts_start_pending_at_raw(self, store, remote):
        result = await store.import_posts([
            PostImportEntry(url="https://a.test/1", source="dealer", note="clean title")
        ])

        post = result.created[0]
        assert post.status == PostStatus.PENDING
        assert post.workflow_step == WorkflowStep.RAW
        assert post.source == "dealer"
        assert remote.rows[post.id]["admin_id"] == OWNER_ID

    @pytest.mark.asyncio
    async def test_inserted_in_one_batch(self, store, remote):
        await store.import_posts(entries("https://a.test/1", "https://a.test/2", "https://a.test/3"))

        inserts = remote.calls_to("insert")
        assert len(inserts) == 1
        assert len(inserts[0]) == 3

    @pytest.mark.asyncio
    async def test_failed_insert_imports_nothing(self, store, remote):
        remote.fail_next("insert", DatabaseError("insert", "boom"))

        with pytest.raises(DatabaseError):
            await store.import_posts(entries("https://a.test/1"))

        assert store.posts == []

    @pytest.mark.asyncio
    async def test_live_echo_before_insert_returns_is_not_doubled(self, store, remote):
        result = await store.import_posts(entries("https://a.test/1"))
        post_id = result.created[0].id

        changed = store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=remote.rows[post_id]))

        assert changed is False
        assert len(store.posts) == 1


# ===================
# SELECTION & SEARCH
# ===================

class TestSelection:

    @pytest.mark.asyncio
    async def test_set_active_unknown_post(self, store):
        with pytest.raises(PostNotFoundError):
            store.set_active("missing")

    @pytest.mark.asyncio
    async def test_next_and_previous_wrap(self, store, remote):
        seed(remote, id="a", created_at="2025-09-03T00:00:00+00:00")
        seed(remote, id="b", created_at="2025-09-02T00:00:00+00:00")
        seed(remote, id="c", created_at="2025-09-01T00:00:00+00:00")
        await store.hydrate()

        assert store.select_next().id == "a"
        assert store.select_next().id == "b"
        store.set_active("c")
        assert store.select_next().id == "a"
        assert store.select_previous().id == "c"

    @pytest.mark.asyncio
    async def test_search_matches_url_source_and_note(self, store, remote):
        seed(remote, id="a", url="https://dealer.test/x5")
        seed(remote, id="b", source="Auction X5 lot")
        seed(remote, id="c", note="needs x5 photos")
        seed(remote, id="d", url="https://dealer.test/q7")
        await store.hydrate()

        store.set_search("  X5 ")

        assert {post.id for post in store.visible_posts()} == {"a", "b", "c"}
        assert store.search == "X5"

    @pytest.mark.asyncio
    async def test_empty_search_shows_all(self, store, remote):
        seed(remote)
        seed(remote)
        await store.hydrate()

        store.set_search(None)

        assert len(store.visible_posts()) == 2


# ===================
# STATUS
# ===================

class TestReject:

    @pytest.mark.asyncio
    async def test_reject_then_analyze_fails(self, store, remote, extractor):
        seed(remote, id="p1", raw_content="2024 BMW X7")
        await store.hydrate()

        await store.reject("p1", "salvage title")
        with pytest.raises(PostRejectedError) as exc_info:
            await store.analyze("p1")

        assert exc_info.value.message == "cannot analyze rejected post"
        assert store.get("p1").status == PostStatus.REJECTED
        assert extractor.calls == []

    @pytest.mark.asyncio
    async def test_reject_is_idempotent(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        await store.reject("p1")
        await store.reject("p1")

        assert len(remote.calls_to("update")) == 1

    @pytest.mark.asyncio
    async def test_reject_stores_reason(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        await store.reject("p1", "salvage title")

        assert remote.rows["p1"]["status"] == "rejected"
        assert remote.rows["p1"]["rejection_reason"] == "salvage title"

    @pytest.mark.asyncio
    async def test_undo_reject_returns_to_pending(self, store, remote):
        seed(remote, id="p1", status="rejected", rejection_reason="dupe")
        await store.hydrate()

        post = await store.undo_reject("p1")

        assert post.status == PostStatus.PENDING
        assert post.rejection_reason is None

    @pytest.mark.asyncio
    async def test_finalize_rejected_post_fails(self, store, remote):
        seed(remote, id="p1", status="rejected")
        await store.hydrate()

        with pytest.raises(PostRejectedError):
            await store.finalize_post("p1")


class TestSaveRaw:

    @pytest.mark.asyncio
    async def test_does_not_complete_raw_step(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        post = await store.save_raw("p1", "2024 BMW X7 xDrive40i")

        assert post.raw_content == "2024 BMW X7 xDrive40i"
        assert post.step_completed.raw is False
        assert remote.rows["p1"]["raw_content"] == "2024 BMW X7 xDrive40i"


# ===================
# ANALYSIS
# ===================

class TestAnalyze:
    """Tests for PostStore.analyze()"""

    @pytest.mark.asyncio
    async def test_empty_raw_content_rejected_before_network(self, store, remote, extractor):
        seed(remote, id="p1", raw_content="")
        await store.hydrate()

        with pytest.raises(EmptyRawContentError):
            await store.analyze("p1")

        assert extractor.calls == []
        assert remote.calls_to("update") == []
        assert store.get("p1").status == PostStatus.PENDING

    @pytest.mark.asyncio
    async def test_malformed_numbers_in_response_do_not_fail(self, remote):
        service = httpx.MockTransport(lambda request: httpx.Response(
            200, text='{"make": "BMW", "model": "X7", "year": "1e999", "price": Infinity}'
        ))
        store = PostStore(
            remote=remote,
            extractor=ExtractionClient(
                endpoint="https://ai.test/analyze",
                http_client=httpx.AsyncClient(transport=service),
            ),
            owner_id=OWNER_ID,
            auto_advance_delay=0,
        )
        seed(remote, id="p1", raw_content="2024 BMW X7 for sale")
        await store.hydrate()

        post = await store.analyze("p1")
        await store.drain()

        assert post.status == PostStatus.PARSED
        assert post.parsed_json.vehicle.make == "BMW"
        assert post.parsed_json.vehicle.year is None
        assert post.parsed_json.price is None

    @pytest.mark.asyncio
    async def test_success_parses_and_completes_raw(self, store, remote, extractor):
        extractor.result = adapt_response(
            {"make": "BMW", "model": "X7", "year": 2024, "price": 320000},
            "https://cars.test/1"
        )
        seed(remote, id="p1", raw_content="2024 BMW X7 for sale")
        await store.hydrate()

        post = await store.analyze("p1")

        assert post.status == PostStatus.PARSED
        assert post.parsed_json.vehicle.make == "BMW"
        assert post.step_completed.raw is True
        assert remote.rows["p1"]["status"] == "analyzed"
        assert remote.rows["p1"]["last_analyzed_at"]
        assert not store.is_analyzing("p1")

    @pytest.mark.asyncio
    async def test_status_is_analyzing_while_in_flight(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        task = asyncio.ensure_future(store.analyze("p1"))
        await settle()

        assert store.get("p1").status == PostStatus.ANALYZING
        assert store.analyzing_ids == ["p1"]

        extractor.release()
        await task

    @pytest.mark.asyncio
    async def test_second_analyze_is_rejected(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        first = asyncio.ensure_future(store.analyze("p1"))
        await settle()
        with pytest.raises(AnalysisInProgressError):
            await store.analyze("p1")

        extractor.release()
        await first
        assert len(extractor.calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_reverts_to_pending(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        task = asyncio.ensure_future(store.analyze("p1"))
        await settle()
        assert store.cancel_analysis("p1") is True
        result = await task

        assert result is None
        assert store.get("p1").status == PostStatus.PENDING
        assert store.get("p1").step_completed.raw is False
        assert remote.rows["p1"]["status"] == "pending"
        assert not store.is_analyzing("p1")

    @pytest.mark.asyncio
    async def test_cancel_without_analysis(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        assert store.cancel_analysis("p1") is False

    @pytest.mark.asyncio
    async def test_failure_reverts_and_raises(self, store, remote, extractor):
        extractor.error = ExtractionError("Analyze failed (500): boom")
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        with pytest.raises(ExtractionError):
            await store.analyze("p1")

        assert store.get("p1").status == PostStatus.PENDING
        assert not store.is_analyzing("p1")

    @pytest.mark.asyncio
    async def test_timeout_reverts_and_raises(self, store, remote, extractor):
        extractor.error = ExtractionTimeoutError(5)
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        with pytest.raises(ExtractionTimeoutError):
            await store.analyze("p1")

        assert store.get("p1").status == PostStatus.PENDING

    @pytest.mark.asyncio
    async def test_can_analyze_again_after_failure(self, store, remote, extractor):
        extractor.error = ExtractionError("boom")
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()
        with pytest.raises(ExtractionError):
            await store.analyze("p1")

        extractor.error = None
        post = await store.analyze("p1")

        assert post.status == PostStatus.PARSED

    @pytest.mark.asyncio
    async def test_auto_advances_to_details(self, store, remote):
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        await store.analyze("p1")
        await store.drain()

        assert store.get("p1").workflow_step == WorkflowStep.DETAILS
        assert remote.rows["p1"]["workflow_step"] == "details"

    @pytest.mark.asyncio
    async def test_auto_advance_skipped_if_operator_moved_on(self, store, remote):
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()
        store.auto_advance_delay = 0.05

        await store.analyze("p1")
        await store.advance_step("p1")
        await store.save_details("p1", {"title": "Edited"})
        await store.advance_step("p1")
        await store.drain()

        assert store.get("p1").workflow_step == WorkflowStep.IMAGES

    @pytest.mark.asyncio
    async def test_other_posts_keep_analyzing_when_selection_changes(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        seed(remote, id="p2", raw_content="text")
        await store.hydrate()

        task = asyncio.ensure_future(store.analyze("p1"))
        await settle()
        store.set_active("p2")

        assert store.is_analyzing("p1")
        extractor.release()
        assert (await task).status == PostStatus.PARSED

    @pytest.mark.asyncio
    async def test_reject_cancels_running_analysis(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        task = asyncio.ensure_future(store.analyze("p1"))
        await settle()
        await store.reject("p1")
        result = await task

        assert result is None
        assert store.get("p1").status == PostStatus.REJECTED


# ===================
# DETAILS & IMAGES
# ===================

class TestDetails:

    @pytest.mark.asyncio
    async def test_merge_and_complete_step(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()

        post = await store.save_details("p1", {"title": "2024 BMW X7 M Sport", "city": "Riyadh"})

        assert post.parsed_json.title == "2024 BMW X7 M Sport"
        assert post.parsed_json.city == "Riyadh"
        assert post.parsed_json.vehicle.make == "BMW"
        assert post.step_completed.details is True
        assert post.step_completed.raw is True

    @pytest.mark.asyncio
    async def test_invalid_details(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()

        with pytest.raises(ValidationError) as exc_info:
            await store.save_details("p1", {"price": "not a number"})

        assert exc_info.value.code == "INVALID_DETAILS"
        assert remote.calls_to("update") == []


class TestImages:

    @pytest.mark.asyncio
    async def test_single_main_image(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        post = await store.set_images("p1", [
            ImageItem(url="a", keep=True, is_main=True),
            ImageItem(url="b", keep=True, is_main=True),
        ])

        assert [image.is_main for image in post.images].count(True) == 1
        assert post.main_image.url == "a"

    @pytest.mark.asyncio
    async def test_first_kept_image_becomes_main(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        post = await store.set_images("p1", [
            ImageItem(url="a", keep=False, is_main=True),
            ImageItem(url="b", keep=True),
        ])

        assert post.main_image.url == "b"
        assert post.images[0].is_main is False

    @pytest.mark.asyncio
    async def test_unkeeping_main_moves_main(self, store, remote):
        seed(remote, id="p1", images=[
            {"url": "a", "keep": True, "isMain": True},
            {"url": "b", "keep": True, "isMain": False},
        ])
        await store.hydrate()

        post = await store.toggle_image_keep("p1", 0)

        assert post.images[0].keep is False
        assert post.main_image.url == "b"

    @pytest.mark.asyncio
    async def test_set_main_keeps_the_image(self, store, remote):
        seed(remote, id="p1", images=[
            {"url": "a", "keep": True, "isMain": True},
            {"url": "b", "keep": False, "isMain": False},
        ])
        await store.hydrate()

        post = await store.set_main_image("p1", 1)

        assert post.main_image.url == "b"
        assert post.images[1].keep is True
        assert post.images[0].is_main is False

    @pytest.mark.asyncio
    async def test_index_out_of_range(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        with pytest.raises(ValidationError) as exc_info:
            await store.set_main_image("p1", 3)

        assert exc_info.value.code == "IMAGE_INDEX_OUT_OF_RANGE"

    @pytest.mark.asyncio
    async def test_import_images_by_post_url(self, store, remote):
        seed(remote, id="p1", url="https://cars.test/1", images=[{"url": "https://img.test/1.jpg"}])
        seed(remote, id="p2", url="https://cars.test/2")
        await store.hydrate()

        result = await store.import_images([
            ImageImportRow(post_url="https://cars.test/1/", image_url="https://img.test/1.jpg"),
            ImageImportRow(post_url="https://cars.test/1", image_url="https://img.test/2.jpg"),
            ImageImportRow(post_url="https://cars.test/2", image_url="https://img.test/3.jpg", caption="Front"),
            ImageImportRow(post_url="https://cars.test/404", image_url="https://img.test/4.jpg"),
        ])

        assert result.updated_posts == 2
        assert result.added_images == 2
        assert result.unmatched_urls == ["https://cars.test/404"]
        assert [image.url for image in store.get("p1").images] == [
            "https://img.test/1.jpg",
            "https://img.test/2.jpg",
        ]
        assert store.get("p2").main_image.caption == "Front"

    @pytest.mark.asyncio
    async def test_accept_images_completes_step(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        post = await store.accept_images("p1")

        assert post.step_completed.images is True


# ===================
# PRICING
# ===================

class TestPricing:

    @pytest.mark.asyncio
    async def test_save_pricing(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        post = await store.save_pricing("p1", PricingInputs(
            car_price=100000, shipping=5000, broker_fee=3000, platform_fee=2000
        ))

        assert post.pricing.total == Decimal("484812.5")
        assert post.step_completed.pricing is True
        assert remote.rows["p1"]["pricing"]["totalSAR"] == 484812.5
        assert remote.rows["p1"]["pricing"]["carPrice"] == 100000.0

    @pytest.mark.asyncio
    async def test_preview_does_not_save(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()

        breakdown = store.calculate_pricing("p1")

        assert breakdown.car_price == Decimal("320000")
        assert remote.calls_to("update") == []

    @pytest.mark.asyncio
    async def test_autosave_is_debounced(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        store.schedule_pricing_save("p1", PricingInputs(car_price=1))
        store.schedule_pricing_save("p1", PricingInputs(car_price=10))
        store.schedule_pricing_save("p1", PricingInputs(car_price=100))
        await store.drain()

        updates = remote.calls_to("update")
        assert len(updates) == 1
        assert store.get("p1").pricing.car_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_autosave_waits_for_car_price(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        scheduled = store.schedule_pricing_save("p1", PricingInputs(shipping=5000))
        await store.drain()

        assert scheduled is False
        assert remote.calls_to("update") == []

    @pytest.mark.asyncio
    async def test_explicit_save_supersedes_pending_autosave(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        store.schedule_pricing_save("p1", PricingInputs(car_price=1))
        await store.save_pricing("p1", PricingInputs(car_price=500))
        await store.drain()

        assert len(remote.calls_to("update")) == 1
        assert store.get("p1").pricing.car_price == Decimal("500")


# ===================
# WORKFLOW
# ===================

class TestWorkflow:

    @pytest.mark.asyncio
    async def test_advance_blocked_by_gate(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()

        with pytest.raises(StepNotReadyError):
            await store.advance_step("p1")

        assert store.get("p1").workflow_step == WorkflowStep.RAW

    @pytest.mark.asyncio
    async def test_full_walk_to_complete(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()

        await store.advance_step("p1")
        await store.save_details("p1", {"city": "Jeddah"})
        await store.advance_step("p1")
        await store.set_images("p1", [ImageItem(url="https://img.test/1.jpg")])
        await store.advance_step("p1")
        await store.save_pricing("p1", PricingInputs(car_price=1000))
        post = await store.advance_step("p1")

        assert post.workflow_step == WorkflowStep.COMPLETE

    @pytest.mark.asyncio
    async def test_go_back_keeps_later_data(self, store, remote):
        seed(remote, id="p1", workflow_step="pricing", step_completed={"raw": True, "details": True})
        await store.hydrate()

        post = await store.go_back("p1", WorkflowStep.DETAILS)

        assert post.workflow_step == WorkflowStep.DETAILS
        assert post.step_completed.details is True

    @pytest.mark.asyncio
    async def test_reset_workflow(self, store, remote):
        seed(remote, id="p1", parsed=True, workflow_step="images", step_completed={"raw": True, "details": True})
        await store.hydrate()

        post = await store.reset_workflow("p1")

        assert post.workflow_step == WorkflowStep.RAW
        assert post.step_completed == StepCompleted()

    @pytest.mark.asyncio
    async def test_finalize(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()

        post = await store.finalize_post("p1")

        assert post.status == PostStatus.READY
        assert post.workflow_step == WorkflowStep.COMPLETE
        assert remote.rows["p1"]["status"] == "completed"
        assert remote.rows["p1"]["completed_at"]


# ===================
# WRITE-THROUGH
# ===================

class TestWriteThrough:

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        remote.fail_next("update", PermissionDeniedError("update", "permission denied for table"))

        with pytest.raises(PermissionDeniedError):
            await store.reject("p1")

        assert store.get("p1").status == PostStatus.PENDING

    @pytest.mark.asyncio
    async def test_update_matching_no_row_rolls_back(self, store, remote):
        seed(remote, id="p1", parsed=True)
        await store.hydrate()
        # Hidden by row-level security: the write reaches no row
        del remote.rows["p1"]

        with pytest.raises(PermissionDeniedError):
            await store.finalize_post("p1")

        post = store.get("p1")
        assert post.status == PostStatus.PARSED
        assert post.workflow_step == WorkflowStep.RAW

    @pytest.mark.asyncio
    async def test_rollback_skipped_when_live_event_replaced_post(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        replacement = {**remote.rows["p1"], "note": "edited elsewhere"}

        async def failing_update(post_id, fields):
            store.apply_change(ChangeEvent(type=ChangeType.UPDATE, record=replacement))
            raise DatabaseError("update", "boom")

        remote.update = failing_update

        with pytest.raises(DatabaseError):
            await store.save_raw("p1", "text")

        assert store.get("p1").note == "edited elsewhere"

    @pytest.mark.asyncio
    async def test_listeners_see_each_revision(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        seen = []
        remove = store.add_listener(seen.append)

        await store.save_raw("p1", "text")
        remove()
        await store.save_raw("p1", "more")

        assert seen == [store.revision - 1]


# ===================
# LIVE CHANGES
# ===================

class TestApplyChange:
    """Tests for PostStore.apply_change()"""

    @pytest.mark.asyncio
    async def test_own_echo_is_a_no_op(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        await store.save_raw("p1", "2024 BMW X7")
        revision = store.revision

        changed = store.apply_change(ChangeEvent.from_payload(remote.echo("p1")))

        assert changed is False
        assert store.revision == revision

    @pytest.mark.asyncio
    async def test_analysis_echo_is_a_no_op(self, store, remote):
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()
        await store.analyze("p1")
        await store.drain()
        revision = store.revision

        changed = store.apply_change(ChangeEvent.from_payload(remote.echo("p1")))

        assert changed is False
        assert store.revision == revision

    def test_update_replaces_post(self, store):
        store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=PostRowFactory.create(id="p1")))

        changed = store.apply_change(ChangeEvent(
            type=ChangeType.UPDATE,
            record=PostRowFactory.create(id="p1", status="rejected"),
        ))

        assert changed is True
        assert store.get("p1").status == PostStatus.REJECTED

    def test_update_for_unknown_post_adds_it(self, store):
        changed = store.apply_change(ChangeEvent(
            type=ChangeType.UPDATE,
            record=PostRowFactory.create(id="p9"),
        ))

        assert changed is True
        assert store.get("p9") is not None

    def test_insert_prepends(self, store):
        store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=PostRowFactory.create(id="old")))
        store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=PostRowFactory.create(id="new")))

        assert [post.id for post in store.posts] == ["new", "old"]

    def test_delete_removes_and_clears_selection(self, store):
        store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=PostRowFactory.create(id="p1")))
        store.set_active("p1")

        changed = store.apply_change(ChangeEvent(type=ChangeType.DELETE, old_record={"id": "p1"}))

        assert changed is True
        assert store.get("p1") is None
        assert store.active_id is None

    def test_delete_without_id(self, store):
        with pytest.raises(RecordMappingError):
            store.apply_change(ChangeEvent(type=ChangeType.DELETE, old_record={}))

    def test_update_without_parsed_json_keeps_local(self, store):
        store.apply_change(ChangeEvent(type=ChangeType.INSERT, record=PostRowFactory.parsed(id="p1")))

        store.apply_change(ChangeEvent(
            type=ChangeType.UPDATE,
            record=PostRowFactory.create(id="p1", status="analyzed", note="metadata write"),
        ))

        post = store.get("p1")
        assert post.note == "metadata write"
        assert post.parsed_json.vehicle.make == "BMW"

    @pytest.mark.asyncio
    async def test_remote_delete_cancels_analysis(self, store, remote, extractor):
        extractor.hold()
        seed(remote, id="p1", raw_content="text")
        await store.hydrate()

        task = asyncio.ensure_future(store.analyze("p1"))
        await settle()
        store.apply_change(ChangeEvent(type=ChangeType.DELETE, old_record={"id": "p1"}))
        result = await task

        assert result is None
        assert store.get("p1") is None


class TestReconcile:

    def test_incoming_wins(self):
        local = row_to_post(PostRowFactory.create(id="p1", note="old"))
        incoming = row_to_post(PostRowFactory.create(id="p1", note="new"))

        assert reconcile(local, incoming).note == "new"

    def test_local_parsed_json_survives(self):
        local = row_to_post(PostRowFactory.parsed(id="p1"))
        incoming = row_to_post(PostRowFactory.create(id="p1"))

        merged = reconcile(local, incoming)

        assert merged.parsed_json == local.parsed_json

    def test_incoming_parsed_json_replaces_local(self):
        local = row_to_post(PostRowFactory.parsed(id="p1"))
        incoming = row_to_post(PostRowFactory.parsed(id="p1", parsed_json={"title": "Newer"}))

        assert reconcile(local, incoming).parsed_json.title == "Newer"


# ===================
# RESET
# ===================

class TestReset:

    @pytest.mark.asyncio
    async def test_deletes_owned_posts(self, store, remote):
        seed(remote, id="mine")
        seed(remote, id="theirs", admin_id="admin-2")
        await store.hydrate()
        store.set_active("mine")
        store.set_search("x")

        deleted = await store.reset()

        assert deleted == 1
        assert store.posts == []
        assert store.active_id is None
        assert store.search == ""
        assert list(remote.rows) == ["theirs"]

    @pytest.mark.asyncio
    async def test_requires_operator(self, remote, extractor):
        store = PostStore(remote=remote, extractor=extractor, owner_id=None)

        with pytest.raises(OperatorRequiredError):
            await store.reset()

        assert remote.calls_to("delete") == []

    @pytest.mark.asyncio
    async def test_cancels_pending_autosave(self, store, remote):
        seed(remote, id="p1")
        await store.hydrate()
        store.schedule_pricing_save("p1", PricingInputs(car_price=1000))

        await store.reset()
        await store.drain()

        assert remote.calls_to("update") == []


class TestRequire:

    def test_unknown_post(self):
        store = PostStore(remote=FakeRemoteStore(), extractor=FakeExtractionClient())

        with pytest.raises(PostNotFoundError):
            store.require("nope")

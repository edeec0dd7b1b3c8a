#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
End-to-end pipeline tests over in-process fakes
"""
from datetime import timedelta

from axp_exceptions import ExtractionError
from config.constant import ReviewStates
from interfaces import (
    ExtractionResult,
    InMemoryObjectStore,
    StaticExtractionService,
    TaskOutcome,
    task_id_for,
)
from ingest.pipeline import ResultStatus
from ingest.worker import IngestWorker
from routing import build_prefix_map

from conftest import BUCKET, TENANT_ID, TENANT_TAX_ID, write_pdf

INVOICE_LINES = (
    "GLOBEX SRL",
    "CUIT: 30-65432109-8",
    "FACTURA A",
    "Nro 00003-00012345",
    "Fecha: 20/12/2025",
    "Subtotal: 1.234,56",
    "IVA 21%: 259,26",
    "Total: 1.493,82",
)


def _fetch_document(record_store, document_id):
    with record_store.session_scope() as session:
        return record_store.get_document(session, document_id)


class TestHappyPath:

    def test_file_is_stored_extracted_and_moved_to_done(
            self, make_pipeline, dirs, record_store, add_provider):
        provider = add_provider("Globex SRL", tax_id="30654321098")
        store = InMemoryObjectStore()
        extraction = StaticExtractionService(default=ExtractionResult(lines=INVOICE_LINES))
        pipeline, sink = make_pipeline(object_store=store, extraction=extraction)
        path = write_pdf(dirs.watch, "weiss_20251226_101500.pdf")

        result = pipeline.process(path)

        assert result.status == ResultStatus.SUCCEEDED
        assert not path.exists()
        assert (dirs.done / path.name).exists()
        key = f"cuit={TENANT_TAX_ID}/2025/12/26/weiss_20251226_101500.pdf"
        assert store.keys() == [(BUCKET, key)]
        assert store.content_type(BUCKET, key) == "application/pdf"

        document = _fetch_document(record_store, result.document_id)
        assert document.provider_id == provider.id
        assert document.review_state == ReviewStates.CONFIRMADO
        assert document.storage_key == key

        task = pipeline.registry.get(task_id_for(path.name))
        assert task.outcome == TaskOutcome.SUCCEEDED
        assert task.processing_token is None
        assert "File received" in sink.messages()
        assert pipeline.stats.get_stats()["files_succeeded"] == 1

    def test_same_filename_is_not_processed_twice(self, make_pipeline, dirs):
        pipeline, _ = make_pipeline(move_files=False)
        path = write_pdf(dirs.watch, "weiss_once.pdf")
        assert pipeline.process(path).status == ResultStatus.SUCCEEDED
        assert path.exists()
        assert pipeline.process(path).status == ResultStatus.SKIPPED

    def test_same_filename_with_new_content_is_ingested_again(self, make_pipeline, dirs):
        store = InMemoryObjectStore()
        pipeline, _ = make_pipeline(object_store=store)
        first = pipeline.process(write_pdf(dirs.watch, "weiss_factura.pdf", b"first"))
        path = write_pdf(dirs.watch, "weiss_factura.pdf", b"second")

        second = pipeline.process(path)

        assert first.status == ResultStatus.SUCCEEDED
        assert second.status == ResultStatus.SUCCEEDED
        assert second.document_id != first.document_id
        assert not path.exists()
        assert len(list(dirs.done.iterdir())) == 2
        keys = [key for _, key in store.keys()]
        assert len(keys) == 2
        assert any(key.endswith(f"weiss_factura_{second.task.fingerprint[:8]}.pdf") for key in keys)

    def test_same_file_dropped_again_is_moved_out_as_duplicate(self, make_pipeline, dirs,
                                                              record_store):
        store = InMemoryObjectStore()
        pipeline, sink = make_pipeline(object_store=store)
        first = pipeline.process(write_pdf(dirs.watch, "weiss_factura.pdf", b"same"))
        path = write_pdf(dirs.watch, "weiss_factura.pdf", b"same")

        again = pipeline.process(path)

        assert again.status == ResultStatus.DUPLICATE
        assert again.document_id == first.document_id
        assert not path.exists()
        assert (dirs.done / "DUPLICATE_weiss_factura.pdf").exists()
        assert any(e["level"] == "WARN" and e["message"] == "Duplicate file"
                   for e in sink.events)
        assert store.put_calls == 1

    def test_noisy_digit_runs_do_not_fail_the_file(self, make_pipeline, dirs, record_store):
        extraction = StaticExtractionService(
            default=ExtractionResult(lines=("Total: " + "9" * 40,)))
        pipeline, _ = make_pipeline(extraction=extraction)

        result = pipeline.process(write_pdf(dirs.watch, "weiss_barcode.pdf"))

        assert result.status == ResultStatus.SUCCEEDED
        document = _fetch_document(record_store, result.document_id)
        assert document.total is None
        assert document.review_state == ReviewStates.PENDIENTE


class TestRouting:

    def test_unrouted_file_waits_for_prefix_map_change(self, make_pipeline, dirs, prefix_maps):
        pipeline, sink = make_pipeline()
        path = write_pdf(dirs.watch, "acme_invoice.pdf")

        first = pipeline.process(path)
        assert first.status == ResultStatus.UNROUTED
        assert path.exists()
        assert pipeline.process(path).status == ResultStatus.SKIPPED

        prefix_maps.swap(build_prefix_map({
            "acme": {"tenantId": "tenant-acme", "bucket": "axp-acme"},
        }))
        assert pipeline.process(path).status == ResultStatus.SUCCEEDED
        assert (dirs.done / path.name).exists()
        assert any(e["level"] == "WARN" for e in sink.events)


class TestDuplicates:

    def test_identical_content_is_a_duplicate(self, make_pipeline, dirs, record_store):
        pipeline, sink = make_pipeline()
        first = pipeline.process(write_pdf(dirs.watch, "weiss_a.pdf", b"same"))
        second = pipeline.process(write_pdf(dirs.watch, "weiss_b.pdf", b"same"))

        assert first.status == ResultStatus.SUCCEEDED
        assert second.status == ResultStatus.DUPLICATE
        assert second.document_id == first.document_id
        assert (dirs.done / "DUPLICATE_weiss_b.pdf").exists()
        assert "Duplicate file" in sink.messages()

    def test_identical_content_for_other_tenant_is_not_a_duplicate(
            self, make_pipeline, dirs, prefix_maps):
        prefix_maps.swap(build_prefix_map({
            "weiss": {"tenantId": TENANT_ID, "bucket": BUCKET},
            "acme": {"tenantId": "tenant-acme", "bucket": "axp-acme"},
        }))
        pipeline, _ = make_pipeline()
        assert pipeline.process(write_pdf(dirs.watch, "weiss_a.pdf", b"same")).status == \
            ResultStatus.SUCCEEDED
        assert pipeline.process(write_pdf(dirs.watch, "acme_a.pdf", b"same")).status == \
            ResultStatus.SUCCEEDED


class TestRetries:

    def test_transient_upload_failure_is_retried_when_due(self, make_pipeline, dirs, clock):
        store = InMemoryObjectStore(fail_puts=1)
        pipeline, _ = make_pipeline(object_store=store)
        path = write_pdf(dirs.watch, "weiss_retry.pdf")

        first = pipeline.process(path)
        assert first.status == ResultStatus.RETRY_SCHEDULED
        assert first.task.attempts == 1
        staged = dirs.processing / path.name
        assert staged.exists()

        clock.now += timedelta(minutes=1)
        assert pipeline.process(staged).status == ResultStatus.SKIPPED

        clock.now += timedelta(minutes=1)
        second = pipeline.process(staged)
        assert second.status == ResultStatus.SUCCEEDED
        assert store.put_calls == 2
        assert (dirs.done / path.name).exists()

    def test_exhausted_retries_dead_letter_and_release_claim(
            self, make_pipeline, dirs, clock, record_store):
        pipeline, sink = make_pipeline(object_store=InMemoryObjectStore(fail_puts=100))
        path = write_pdf(dirs.watch, "weiss_down.pdf", b"payload")

        result = pipeline.process(path)
        staged = dirs.processing / path.name
        for _ in range(4):
            assert result.status == ResultStatus.RETRY_SCHEDULED
            clock.now += timedelta(hours=1)
            result = pipeline.process(staged)

        assert result.status == ResultStatus.DEAD_LETTERED
        assert result.task.attempts == 5
        assert (dirs.failed / path.name).exists()
        assert any(e["level"] == "ERROR" for e in sink.events)

        claim = record_store.claim_fingerprint(TENANT_ID, result.task.fingerprint, "other-task")
        assert claim.claimed

    def test_permanent_extraction_error_creates_error_document(
            self, make_pipeline, dirs, record_store):
        extraction = StaticExtractionService(
            results={"weiss_bad.pdf": ExtractionError("unsupported document")})
        pipeline, _ = make_pipeline(extraction=extraction)
        path = write_pdf(dirs.watch, "weiss_bad.pdf")

        result = pipeline.process(path)

        assert result.status == ResultStatus.DEAD_LETTERED
        assert (dirs.failed / path.name).exists()
        document = _fetch_document(record_store, result.document_id)
        assert document.review_state == ReviewStates.ERROR
        assert "unsupported document" in document.error_detail


class TestValidation:

    def test_disallowed_extension_is_dead_lettered(self, make_pipeline, dirs):
        pipeline, _ = make_pipeline()
        path = dirs.watch / "weiss_notes.txt"
        path.write_text("not an invoice but long enough", encoding="utf-8")
        result = pipeline.process(path)
        assert result.status == ResultStatus.DEAD_LETTERED
        assert (dirs.failed / path.name).exists()

    def test_too_small_file_is_dead_lettered(self, make_pipeline, dirs):
        pipeline, _ = make_pipeline()
        path = dirs.watch / "weiss_tiny.pdf"
        path.write_bytes(b"%PDF")
        result = pipeline.process(path)
        assert result.status == ResultStatus.DEAD_LETTERED
        assert "too small" in result.error

    def test_unstable_file_stays_pending_with_error_recorded(self, make_pipeline, dirs):
        pipeline, _ = make_pipeline()
        path = dirs.watch / "weiss_copying.pdf"
        path.write_bytes(b"")

        result = pipeline.process(path)

        assert result.status == ResultStatus.NOT_STABLE
        assert path.exists()
        task = pipeline.registry.get(task_id_for(path.name))
        assert task.outcome == TaskOutcome.PENDING
        assert task.attempts == 0
        assert "not stable" in task.last_error
        assert task.processing_token is None


class TestWorker:

    def test_scan_once_processes_root_and_skips_other_files(self, make_pipeline, dirs):
        pipeline, _ = make_pipeline()
        write_pdf(dirs.watch, "weiss_1.pdf", b"one")
        write_pdf(dirs.watch, "weiss_2.pdf", b"two")
        write_pdf(dirs.watch, ".weiss_hidden.pdf", b"hidden")
        (dirs.watch / "weiss_3.txt").write_text("ignored", encoding="utf-8")

        worker = IngestWorker(pipeline, max_workers=1)
        report = worker.scan_once()

        assert report.files_found == 2
        assert report.count(ResultStatus.SUCCEEDED) == 2
        assert sorted(p.name for p in dirs.done.iterdir()) == ["weiss_1.pdf", "weiss_2.pdf"]
        assert worker.scan_once().files_found == 0
